"""
Enrollment Models

Student, tuition scheme and enrollment records owned by the enrollment
workflow. Billing reads these tables and updates enrollment status and
subject rows after a qualifying payment.
"""

import enum
from decimal import Decimal

from sqlalchemy import Enum, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tuitionpay.modules.shared import BaseModel


class SchemeType(str, enum.Enum):
    """How tuition under a scheme is paid."""

    FULL_PAYMENT = "full_payment"
    INSTALLMENT = "installment"


class EnrollmentStatus(str, enum.Enum):
    PENDING = "Pending"
    ENROLLED = "Enrolled"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class EnrollmentPaymentStatus(str, enum.Enum):
    UNPAID = "Unpaid"
    PARTIAL = "Partial"
    PAID = "Paid"


class Student(BaseModel):
    __tablename__ = "students"

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    year_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class TuitionScheme(BaseModel):
    """Reference data describing the price and payment plan of a program term."""

    __tablename__ = "tuition_schemes"

    scheme_name: Mapped[str] = mapped_column(String(200), nullable=False)
    scheme_type: Mapped[SchemeType] = mapped_column(
        Enum(SchemeType, name="scheme_type"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    downpayment: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    monthly_payment: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    months: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Enrollment(BaseModel):
    __tablename__ = "enrollments"

    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    program_id: Mapped[int] = mapped_column(Integer, nullable=False)
    semester_id: Mapped[int] = mapped_column(Integer, nullable=False)
    scheme_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("tuition_schemes.id"), nullable=True
    )
    status: Mapped[EnrollmentStatus] = mapped_column(
        Enum(EnrollmentStatus, name="enrollment_status"),
        nullable=False,
        default=EnrollmentStatus.PENDING,
    )
    payment_status: Mapped[EnrollmentPaymentStatus] = mapped_column(
        Enum(EnrollmentPaymentStatus, name="enrollment_payment_status"),
        nullable=False,
        default=EnrollmentPaymentStatus.UNPAID,
    )

    student: Mapped["Student"] = relationship("Student", lazy="selectin")
    scheme: Mapped["TuitionScheme | None"] = relationship("TuitionScheme", lazy="selectin")

    __table_args__ = (Index("ix_enrollments_student_id", "student_id"),)


class CourseSubject(BaseModel):
    """Curriculum row: which subject belongs to a program, semester and year level."""

    __tablename__ = "course_subjects"

    program_id: Mapped[int] = mapped_column(Integer, nullable=False)
    semester_id: Mapped[int] = mapped_column(Integer, nullable=False)
    year_level: Mapped[int] = mapped_column(Integer, nullable=False)
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_course_subjects_lookup", "program_id", "semester_id", "year_level"),
    )


class EnrollmentSubject(BaseModel):
    __tablename__ = "enrollment_subjects"

    enrollment_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False
    )
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Enrolled")

    __table_args__ = (Index("ix_enrollment_subjects_enrollment_id", "enrollment_id"),)
