from rest_framework.permissions import AllowAny
from rest_framework.renderers import JSONOpenAPIRenderer
from rest_framework.response import Response
from rest_framework.schemas.openapi import AutoSchema
from rest_framework.schemas.openapi import SchemaGenerator
from rest_framework.views import APIView


SCHEMA_TITLE = "Chamba Tutorías API"
SCHEMA_DESCRIPTION = "Backend APIs for students, volunteer tutors and the admin panel."


class ChambaAutoSchema(AutoSchema):
    def get_operation_id(self, path, method):
        base = super().get_operation_id(path, method)
        return f"{base}{method.capitalize()}"


PUBLIC_PATHS = {
    "/api/auth/send-otp/",
    "/api/auth/verify-otp/",
    "/api/token/refresh/",
    "/api/chat/",
    "/api/catalog/subjects/",
    "/api/catalog/countries/",
    "/api/schema/",
}

ADMIN_KEY_PATHS = {
    "/api/admin/tutors/",
    "/api/admin/tutor-profiles/",
}

TAG_ORDER = {
    "Auth": 0,
    "Student Role": 1,
    "Tutor Role": 2,
    "Shared Role": 3,
    "Admin": 4,
    "General": 5,
}


def tag_for_path(path: str) -> str:
    if path.startswith("/api/auth/") or path.startswith("/api/token/"):
        return "Auth"
    if path.startswith("/api/admin/"):
        return "Admin"
    if path.startswith("/api/jobs/"):
        return "Student Role"
    if path.startswith("/api/offers/tutor/") or path.startswith("/api/tutor/"):
        return "Tutor Role"
    if path.startswith("/api/offers/") or path.startswith("/api/user/") or path.startswith("/api/chat/"):
        return "Shared Role"
    return "General"


class ChambaSchemaView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    renderer_classes = [JSONOpenAPIRenderer]

    def get(self, request, *args, **kwargs):
        generator = SchemaGenerator(
            title=SCHEMA_TITLE,
            description=SCHEMA_DESCRIPTION,
            version="1.0.0",
        )
        schema = generator.get_schema(request=request, public=True)
        if not schema:
            return Response({})

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["HTTPBearer"] = {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
        security_schemes["AdminKey"] = {
            "type": "apiKey",
            "in": "header",
            "name": "x-admin-key",
        }

        schema["tags"] = [
            {"name": "Auth", "description": "Phone OTP login and token refresh."},
            {"name": "Student Role", "description": "Tutoring requests and candidate search."},
            {"name": "Tutor Role", "description": "Tutor profile and offer inbox."},
            {"name": "Shared Role", "description": "Endpoints used by both students and tutors."},
            {"name": "Admin", "description": "Whitelist and tutor curation, guarded by x-admin-key."},
            {"name": "General", "description": "Other endpoints."},
        ]

        path_tags = {}
        for path in schema.get("paths", {}):
            path_tags[path] = tag_for_path(path)

        for path, operations in schema.get("paths", {}).items():
            for method, operation in operations.items():
                if method.lower() not in {"get", "post", "put", "patch", "delete"}:
                    continue
                operation["tags"] = [path_tags[path]]
                if path in PUBLIC_PATHS:
                    operation.pop("security", None)
                elif path in ADMIN_KEY_PATHS:
                    operation["security"] = [{"AdminKey": []}]
                else:
                    operation["security"] = [{"HTTPBearer": []}]

        sorted_paths = {}
        for path in sorted(
            schema.get("paths", {}).keys(),
            key=lambda item: (TAG_ORDER.get(path_tags[item], 99), item),
        ):
            sorted_paths[path] = schema["paths"][path]
        schema["paths"] = sorted_paths

        return Response(schema)
