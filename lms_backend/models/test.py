from sqlalchemy import Column, Integer, String, Text, Enum, Boolean, DateTime, Float, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from lms_backend.database import Base


class TestKind(str, enum.Enum):
    PRACTICE = "practice"
    QUIZ = "quiz"
    ASSIGNMENT = "assignment"
    MOCK_TEST = "mock_test"
    FINAL_EXAM = "final_exam"


class Test(Base):
    __tablename__ = "tests"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True, index=True)
    module_id = Column(Integer, ForeignKey("course_modules.id", ondelete="SET NULL"), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    kind = Column(
        Enum(TestKind, values_callable=lambda kinds: [k.value for k in kinds]),
        default=TestKind.PRACTICE,
        nullable=False,
    )
    difficulty = Column(String(20), nullable=True)
    published = Column(Boolean, default=False, nullable=False)
    time_limit_seconds = Column(Integer, nullable=True)
    passing_score = Column(Float, nullable=True)  # percentage
    allowed_attempts = Column(Integer, nullable=True)  # None = unlimited
    randomized = Column(Boolean, default=False, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    course = relationship("Course", back_populates="tests")
    module = relationship("CourseModule", back_populates="tests")
    questions = relationship(
        "Question",
        back_populates="test",
        cascade="all, delete-orphan",
        order_by="(Question.order_index, Question.id)",
    )
    attempts = relationship("TestAttempt", back_populates="test", cascade="all, delete-orphan")
