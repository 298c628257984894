from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from core.models import ApprovedTutor, TutoringRequest, TutorProfile, UserProfile
from core.otp import ensure_username
from core.permissions import ROLE_STUDENT, ROLE_TUTOR
from core.phone import digits_only, format_phone


TUTORS = [
    {
        "name": "Daniela Guerra",
        "phone": "50376487592",
        "email": "daniela@chamba.com",
        "profile": {
            "subjects": ["MATEMATICAS", "PROGRAMACION", "INGLES"],
            "grade_levels": ["PRIMARIA", "SECUNDARIA", "PREPARATORIA", "UNIVERSIDAD"],
            "specialties": ["Matemáticas básicas", "Programación para principiantes", "Inglés conversacional"],
            "education": "Fundadora de Chamba Tutorías",
            "experience": "5+ años ayudando estudiantes",
            "scheduling_link": "https://calendar.app.google/nNaDZohU5rA2VysY7",
            "bio": (
                "¡Hola! Soy Daniela, fundadora de Chamba Tutorías. Me encanta ayudar a estudiantes "
                "a alcanzar su potencial. Agenda una sesión conmigo para empezar tu camino de aprendizaje 🚀"
            ),
            "languages": ["Español", "Inglés"],
            "rating": "5.00",
            "total_reviews": 50,
            "completed_sessions": 200,
        },
    },
    {
        "name": "Carlos Ramírez",
        "phone": "5512345001",
        "email": "carlos@example.com",
        "profile": {
            "subjects": ["MATEMATICAS", "CALCULO", "ALGEBRA"],
            "grade_levels": ["SECUNDARIA", "PREPARATORIA", "UNIVERSIDAD"],
            "specialties": ["Cálculo diferencial", "Álgebra lineal", "Preparación para exámenes"],
            "education": "Ing. Matemáticas - UNAM",
            "bio": (
                "Ingeniero con 5 años de experiencia dando tutorías. Me apasiona hacer las matemáticas "
                "accesibles para todos. ¡Ningún tema es demasiado difícil! 📐"
            ),
            "languages": ["Español", "Inglés"],
            "rating": "4.90",
            "total_reviews": 87,
            "completed_sessions": 156,
        },
    },
    {
        "name": "María González",
        "phone": "5512345002",
        "email": "maria@example.com",
        "profile": {
            "subjects": ["FISICA", "QUIMICA"],
            "grade_levels": ["PREPARATORIA", "UNIVERSIDAD"],
            "specialties": ["Física mecánica", "Química orgánica", "Laboratorios"],
            "education": "Lic. Química - IPN",
            "bio": "Apasionada por las ciencias. Uso muchos ejemplos prácticos y experimentos mentales. 🔬",
            "languages": ["Español"],
            "rating": "4.80",
            "total_reviews": 65,
            "completed_sessions": 112,
        },
    },
    {
        "name": "Ana Martínez",
        "phone": "5512345003",
        "email": "ana@example.com",
        "profile": {
            "subjects": ["INGLES"],
            "grade_levels": ["PRIMARIA", "SECUNDARIA", "PREPARATORIA", "PROFESIONAL"],
            "specialties": ["Conversación", "Gramática", "Preparación TOEFL", "Business English"],
            "education": "TESOL Certified - Cambridge",
            "bio": "Certificación TESOL. Hago las clases divertidas e interactivas. ¡Let's learn together! 🌎",
            "languages": ["Español", "Inglés"],
            "rating": "5.00",
            "total_reviews": 124,
            "completed_sessions": 298,
        },
    },
    {
        "name": "Roberto Sánchez",
        "phone": "5512345004",
        "email": "roberto@example.com",
        "profile": {
            "subjects": ["PROGRAMACION", "CIENCIAS_COMPUTACION"],
            "grade_levels": ["PREPARATORIA", "UNIVERSIDAD", "PROFESIONAL"],
            "specialties": ["Python", "JavaScript", "Algoritmos", "Estructuras de datos"],
            "education": "Ing. en Sistemas - Tec de Monterrey",
            "bio": "Software engineer. Me encanta enseñar programación desde cero 💻",
            "languages": ["Español", "Inglés"],
            "rating": "4.70",
            "total_reviews": 43,
            "completed_sessions": 78,
        },
    },
    {
        "name": "Laura Hernández",
        "phone": "5512345005",
        "email": "laura@example.com",
        "profile": {
            "subjects": ["ESPANOL", "HISTORIA"],
            "grade_levels": ["PRIMARIA", "SECUNDARIA"],
            "specialties": ["Redacción", "Comprensión lectora", "Historia de México"],
            "education": "Lic. en Letras Hispánicas - UNAM",
            "bio": "Maestra de primaria con 8 años de experiencia en lectura y escritura 📚",
            "languages": ["Español"],
            "rating": "4.90",
            "total_reviews": 98,
            "completed_sessions": 234,
        },
    },
    {
        "name": "Diego Torres",
        "phone": "5512345006",
        "email": "diego@example.com",
        "profile": {
            "subjects": ["MATEMATICAS", "ESTADISTICA", "ECONOMIA"],
            "grade_levels": ["UNIVERSIDAD", "POSGRADO"],
            "specialties": ["Estadística avanzada", "Econometría", "Análisis de datos"],
            "education": "Maestría en Economía - ITAM",
            "bio": "Economista y tutor universitario. Apoyo con tesis y proyectos cuantitativos 📊",
            "languages": ["Español", "Inglés", "Francés"],
            "rating": "4.80",
            "total_reviews": 56,
            "completed_sessions": 89,
        },
    },
]

STUDENTS = [
    {"name": "Daniela Test", "phone": "5500000000", "email": "estudiante@test.com"},
    {"name": "Pedro Estudiante", "phone": "5500000001", "email": "pedro@test.com"},
]

WHITELIST = [
    {"phone": "50376487592", "name": "Daniela Guerra", "notes": "Fundadora - Verificada"},
    {"phone": "5599999999", "name": "Nuevo Tutor Aprobado", "notes": "Verificación completada - puede registrarse"},
]


class Command(BaseCommand):
    help = "Seed sample tutors, test students and the approved-tutor whitelist."

    def add_arguments(self, parser):
        parser.add_argument(
            "--reset",
            action="store_true",
            help="Delete previously seeded users, requests and whitelist entries first.",
        )

    def _upsert_user(self, entry, role):
        User = get_user_model()
        phone = format_phone(entry["phone"])
        profile = UserProfile.objects.select_related("user").filter(phone=phone).first()
        if profile:
            user = profile.user
        else:
            user = User.objects.create_user(username=ensure_username(digits_only(phone)))
            user.set_unusable_password()
        user.email = entry["email"]
        user.save()
        UserProfile.objects.update_or_create(
            user=user,
            defaults={
                "name": entry["name"],
                "phone": phone,
                "role": role,
                "phone_verified_at": timezone.now(),
            },
        )
        return user

    @transaction.atomic
    def handle(self, *args, **options):
        seeded_phones = [format_phone(entry["phone"]) for entry in TUTORS + STUDENTS]

        if options["reset"]:
            User = get_user_model()
            seeded_users = User.objects.filter(userprofile__phone__in=seeded_phones)
            TutoringRequest.objects.filter(student__in=seeded_users).delete()
            seeded_users.delete()
            ApprovedTutor.objects.filter(phone__in=[entry["phone"] for entry in WHITELIST]).delete()
            self.stdout.write("Cleared previously seeded data.")

        for entry in TUTORS:
            user = self._upsert_user(entry, ROLE_TUTOR)
            values = dict(entry["profile"])
            values["rating"] = Decimal(values["rating"])
            TutorProfile.objects.update_or_create(
                user=user,
                defaults={**values, "is_verified": True, "is_active": True},
            )
            self.stdout.write(f"  tutor {entry['name']} ({entry['phone']}): {', '.join(values['subjects'])}")

        for entry in STUDENTS:
            self._upsert_user(entry, ROLE_STUDENT)
            self.stdout.write(f"  student {entry['name']} ({entry['phone']})")

        for entry in WHITELIST:
            ApprovedTutor.objects.update_or_create(
                phone=digits_only(entry["phone"]),
                defaults={"name": entry["name"], "notes": entry["notes"]},
            )

        self.stdout.write(
            self.style.SUCCESS(
                f"Seed data created: {TutorProfile.objects.count()} tutor profiles, "
                f"{ApprovedTutor.objects.count()} approved tutors."
            )
        )
