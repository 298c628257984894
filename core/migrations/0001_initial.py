from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


SUBJECT_CHOICES = [
    ("MATEMATICAS", "Matemáticas"),
    ("ALGEBRA", "Álgebra"),
    ("CALCULO", "Cálculo"),
    ("FISICA", "Física"),
    ("QUIMICA", "Química"),
    ("BIOLOGIA", "Biología"),
    ("INGLES", "Inglés"),
    ("ESPANOL", "Español"),
    ("HISTORIA", "Historia"),
    ("GEOGRAFIA", "Geografía"),
    ("PROGRAMACION", "Programación"),
    ("CIENCIAS_COMPUTACION", "Ciencias de la Computación"),
    ("ECONOMIA", "Economía"),
    ("CONTABILIDAD", "Contabilidad"),
    ("ESTADISTICA", "Estadística"),
    ("OTRO", "Otro"),
]

GRADE_LEVEL_CHOICES = [
    ("PRIMARIA", "Primaria"),
    ("SECUNDARIA", "Secundaria"),
    ("PREPARATORIA", "Preparatoria"),
    ("UNIVERSIDAD", "Universidad"),
    ("POSGRADO", "Posgrado"),
    ("PROFESIONAL", "Profesional"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ApprovedTutor",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("phone", models.CharField(max_length=20, unique=True)),
                ("name", models.CharField(blank=True, max_length=150)),
                ("notes", models.TextField(blank=True)),
                ("used_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.CreateModel(
            name="PhoneVerification",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("phone", models.CharField(db_index=True, max_length=20)),
                ("code_hash", models.CharField(max_length=64)),
                ("expires_at", models.DateTimeField()),
                ("used", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.CreateModel(
            name="UserProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(blank=True, max_length=150)),
                ("phone", models.CharField(blank=True, max_length=20, null=True, unique=True)),
                (
                    "role",
                    models.CharField(
                        choices=[("ESTUDIANTE", "Estudiante"), ("TUTOR", "Tutor")],
                        default="ESTUDIANTE",
                        max_length=20,
                    ),
                ),
                ("phone_verified_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="TutorProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("subjects", models.JSONField(blank=True, default=list)),
                ("grade_levels", models.JSONField(blank=True, default=list)),
                ("bio", models.CharField(blank=True, max_length=500)),
                ("education", models.CharField(blank=True, max_length=255)),
                ("experience", models.TextField(blank=True)),
                ("specialties", models.JSONField(blank=True, default=list)),
                ("languages", models.JSONField(blank=True, default=list)),
                ("scheduling_link", models.URLField(blank=True, max_length=500)),
                ("rating", models.DecimalField(decimal_places=2, default=5, max_digits=3)),
                ("total_reviews", models.PositiveIntegerField(default=0)),
                ("completed_sessions", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("is_verified", models.BooleanField(default=False)),
                ("lat", models.FloatField(blank=True, null=True)),
                ("lng", models.FloatField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="tutor_profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="TutoringRequest",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("subject", models.CharField(choices=SUBJECT_CHOICES, max_length=30)),
                ("grade_level", models.CharField(blank=True, choices=GRADE_LEVEL_CHOICES, max_length=20)),
                ("preferred_time", models.DateTimeField(blank=True, null=True)),
                ("topic", models.TextField(blank=True)),
                ("lat", models.FloatField(blank=True, null=True)),
                ("lng", models.FloatField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("BORRADOR", "Borrador"),
                            ("PENDIENTE", "Pendiente"),
                            ("CONFIRMADO", "Confirmado"),
                            ("RECHAZADO", "Rechazado"),
                            ("CANCELADO", "Cancelado"),
                            ("COMPLETADO", "Completado"),
                        ],
                        default="BORRADOR",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "student",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="tutoring_requests",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
        ),
        migrations.CreateModel(
            name="SessionOffer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "status",
                    models.CharField(
                        choices=[("ENVIADO", "Enviado"), ("ACEPTADO", "Aceptado"), ("RECHAZADO", "Rechazado")],
                        default="ENVIADO",
                        max_length=20,
                    ),
                ),
                ("sent_at", models.DateTimeField(auto_now_add=True)),
                ("responded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "request",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="offers",
                        to="core.tutoringrequest",
                    ),
                ),
                (
                    "tutor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="received_offers",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("request", "tutor"), name="unique_offer_per_request_tutor"),
                ],
            },
        ),
    ]
