"""
Enrollments Module

Collaborator records (students, tuition schemes, enrollments and
curriculum subjects) that billing reads and updates.
"""

from .models import (
    CourseSubject,
    Enrollment,
    EnrollmentPaymentStatus,
    EnrollmentStatus,
    EnrollmentSubject,
    SchemeType,
    Student,
    TuitionScheme,
)

__all__ = [
    "CourseSubject",
    "Enrollment",
    "EnrollmentPaymentStatus",
    "EnrollmentStatus",
    "EnrollmentSubject",
    "SchemeType",
    "Student",
    "TuitionScheme",
]
