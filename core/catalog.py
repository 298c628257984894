from functools import lru_cache


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

DEFAULT_GRADE_LEVELS = ["SECUNDARIA", "PREPARATORIA"]

# (code, name, dial code, local length, placeholder)
COUNTRIES = [
    ("MX", "México", "52", 10, "55 1234 5678"),
    ("GT", "Guatemala", "502", 8, "1234 5678"),
    ("SV", "El Salvador", "503", 8, "1234 5678"),
    ("HN", "Honduras", "504", 8, "1234 5678"),
    ("NI", "Nicaragua", "505", 8, "1234 5678"),
    ("CR", "Costa Rica", "506", 8, "1234 5678"),
    ("PA", "Panamá", "507", 8, "1234 5678"),
    ("BZ", "Belice", "501", 7, "123 4567"),
]

SUBJECT_CODES = {code for code, _label in SUBJECT_CHOICES}
GRADE_LEVEL_CODES = {code for code, _label in GRADE_LEVEL_CHOICES}


def subject_label(code):
    return dict(SUBJECT_CHOICES).get(code, code)


def grade_level_label(code):
    return dict(GRADE_LEVEL_CHOICES).get(code, code)


@lru_cache(maxsize=1)
def get_countries():
    return [
        {
            "code": code,
            "name": name,
            "dial_code": dial_code,
            "phone_length": phone_length,
            "placeholder": placeholder,
        }
        for code, name, dial_code, phone_length, placeholder in COUNTRIES
    ]


def get_subjects():
    return [{"value": code, "label": label} for code, label in SUBJECT_CHOICES]


def get_grade_levels():
    return [{"value": code, "label": label} for code, label in GRADE_LEVEL_CHOICES]
