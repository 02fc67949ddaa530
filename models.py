from __future__ import annotations

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from db import Base


JOB_OFFER_STATUSES = ("open", "closed")
WORK_TYPES = ("full_time", "part_time", "temporary")
JOB_CATEGORIES = ("emergencies", "healthcare", "administrative")
APPLICATION_STATUSES = ("pending", "accepted", "rejected")
PROCESS_STATUSES = ("pending", "in_progress", "completed", "rejected")
EVALUATION_STATUSES = ("pending", "passed", "failed")
INTERVIEW_STATUSES = ("scheduled", "completed", "cancelled")
QUESTION_TYPES = ("multiple_choice", "true_false", "open_ended")
RESULT_STATUSES = ("in_progress", "completed", "expired")
DOCUMENT_TYPES = ("driver_license", "emergency_title", "other_title")
DOCUMENT_STATUSES = ("pending", "approved", "rejected")
APPROVAL_STATUSES = ("approved", "rejected")
NOTIFICATION_TYPES = (
    "message",
    "application_status",
    "new_job_offer",
    "process_update",
    "assessment_assigned",
    "evaluation_complete",
    "interview_scheduled",
    "document_status",
    "document_expiry",
)
EMAIL_TYPES = ("process_update", "assessment_invitation", "interview_scheduled", "evaluation_complete")
EMAIL_STATUSES = ("pending", "sent", "failed")
ACTIVITY_TYPES = ("create", "modify", "delete")


def _in(column: str, values: tuple[str, ...], *, nullable: bool = False) -> CheckConstraint:
    quoted = ", ".join(f"'{v}'" for v in values)
    expr = f"{column} IN ({quoted})"
    if nullable:
        expr = f"{column} IS NULL OR {expr}"
    return CheckConstraint(expr, name=f"ck_{column}_allowed")


class Identity(Base):
    __tablename__ = "identities"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default="ACTIVE")
    lastLoginAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")


class Session(Base):
    __tablename__ = "sessions"

    sessionId = Column(String, primary_key=True)
    tokenHash = Column(String, nullable=False, unique=True, index=True)
    tokenPrefix = Column(String, nullable=False, default="")
    userId = Column(String, nullable=False, index=True)
    email = Column(String, nullable=False, default="")
    issuedAt = Column(Text, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    lastSeenAt = Column(Text, nullable=False, default="")
    revokedAt = Column(Text, nullable=False, default="")


class AuditLog(Base):
    __tablename__ = "audit_log"

    logId = Column(String, primary_key=True)
    entityType = Column(String, nullable=False, default="")
    entityId = Column(String, nullable=False, default="", index=True)
    action = Column(String, nullable=False, default="", index=True)
    stageTag = Column(String, nullable=False, default="")
    remark = Column(Text, nullable=False, default="")
    actorUserId = Column(String, nullable=False, default="")
    actorRole = Column(String, nullable=False, default="")
    at = Column(Text, nullable=False, default="")
    correlationId = Column(String, nullable=False, default="")
    metaJson = Column(Text, nullable=False, default="{}")


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (_in("role", ("candidate", "hr")),)
    _enums = {"role": ("candidate", "hr")}

    id = Column(String, ForeignKey("identities.id", ondelete="CASCADE"), primary_key=True)
    role = Column(String, nullable=False, default="candidate", index=True)
    first_name = Column(Text, nullable=False, default="")
    last_name = Column(Text, nullable=False, default="")
    phone = Column(Text)
    linkedin = Column(Text)
    cv_url = Column(Text)
    birth_date = Column(Text)
    profile_image_url = Column(Text)
    drivers_license = Column(Text)
    emergency_titles = Column(JSON, nullable=False, default=list)
    other_titles = Column(JSON, nullable=False, default=list)
    experience_description = Column(Text)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")

    work_experiences = relationship("WorkExperience", back_populates="profile", cascade="all, delete-orphan")

    @property
    def display_name(self) -> str:
        return " ".join(p for p in [self.first_name or "", self.last_name or ""] if p).strip()


class WorkExperience(Base):
    __tablename__ = "work_experiences"

    id = Column(String, primary_key=True)
    profile_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Text, nullable=False)
    company = Column(Text, nullable=False)
    start_date = Column(Text, nullable=False)
    end_date = Column(Text)
    description = Column(Text)
    created_at = Column(Text, nullable=False, default="")

    profile = relationship("Profile", back_populates="work_experiences")


class JobOffer(Base):
    __tablename__ = "job_offers"
    __table_args__ = (
        _in("status", JOB_OFFER_STATUSES),
        _in("work_type", WORK_TYPES, nullable=True),
        _in("category", JOB_CATEGORIES, nullable=True),
        Index("ix_job_offers_category", "category"),
        Index("ix_job_offers_work_type", "work_type"),
        Index("ix_job_offers_location", "location"),
    )
    _enums = {"status": JOB_OFFER_STATUSES, "work_type": WORK_TYPES, "category": JOB_CATEGORIES}

    id = Column(String, primary_key=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    location = Column(Text)
    published_at = Column(Text, nullable=False, default="")
    closing_date = Column(Text)
    requirements = Column(Text, nullable=False)
    additional_instructions = Column(Text)
    status = Column(String, nullable=False, default="open")
    work_type = Column(String)
    category = Column(String)
    created_by = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")

    applications = relationship("Application", back_populates="job_offer", cascade="all, delete-orphan")
    processes = relationship("SelectionProcess", back_populates="job_offer", cascade="all, delete-orphan")


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (_in("status", APPLICATION_STATUSES),)
    _enums = {"status": APPLICATION_STATUSES}

    id = Column(String, primary_key=True)
    job_offer_id = Column(String, ForeignKey("job_offers.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    applied_at = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="pending")
    created_at = Column(Text, nullable=False, default="")

    job_offer = relationship("JobOffer", back_populates="applications")
    messages = relationship("Message", back_populates="application", cascade="all, delete-orphan")


class SelectionProcess(Base):
    __tablename__ = "selection_processes"
    __table_args__ = (_in("status", PROCESS_STATUSES),)
    _enums = {"status": PROCESS_STATUSES}

    id = Column(String, primary_key=True)
    job_offer_id = Column(String, ForeignKey("job_offers.id", ondelete="CASCADE"), nullable=False, index=True)
    candidate_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False, default="pending")
    start_date = Column(Text, nullable=False, default="")
    end_date = Column(Text)
    notes = Column(Text)
    required_assessments = Column(JSON, nullable=False, default=list)
    completed_assessments = Column(JSON, nullable=False, default=list)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")

    job_offer = relationship("JobOffer", back_populates="processes")
    stages = relationship(
        "ProcessStage", back_populates="process", cascade="all, delete-orphan", order_by="ProcessStage.order_index"
    )
    interviews = relationship("Interview", back_populates="process", cascade="all, delete-orphan")
    results = relationship("AssessmentResult", back_populates="process", cascade="all, delete-orphan")


class ProcessStage(Base):
    __tablename__ = "process_stages"

    id = Column(String, primary_key=True)
    process_id = Column(String, ForeignKey("selection_processes.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    order_index = Column(Integer, nullable=False, default=0)
    requirements = Column(Text)
    is_required = Column(Boolean, nullable=False, default=True)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")

    process = relationship("SelectionProcess", back_populates="stages")
    evaluations = relationship("CandidateEvaluation", back_populates="stage", cascade="all, delete-orphan")


class CandidateEvaluation(Base):
    __tablename__ = "candidate_evaluations"
    __table_args__ = (
        _in("status", EVALUATION_STATUSES),
        CheckConstraint("score IS NULL OR (score >= 0 AND score <= 100)", name="ck_score_range"),
    )
    _enums = {"status": EVALUATION_STATUSES}
    _ranges = {"score": (0, 100)}

    id = Column(String, primary_key=True)
    stage_id = Column(String, ForeignKey("process_stages.id", ondelete="CASCADE"), nullable=False, index=True)
    evaluator_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    score = Column(Integer)
    feedback = Column(Text)
    status = Column(String, nullable=False, default="pending")
    template_id = Column(String, ForeignKey("evaluation_templates.id", ondelete="SET NULL"))
    criteria_scores = Column(JSON)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")

    stage = relationship("ProcessStage", back_populates="evaluations")


class Interview(Base):
    __tablename__ = "interviews"
    __table_args__ = (
        _in("status", INTERVIEW_STATUSES),
        CheckConstraint("duration_minutes > 0", name="ck_duration_positive"),
    )
    _enums = {"status": INTERVIEW_STATUSES}
    _ranges = {"duration_minutes": (1, 24 * 60)}

    id = Column(String, primary_key=True)
    process_id = Column(String, ForeignKey("selection_processes.id", ondelete="CASCADE"), nullable=False, index=True)
    interviewer_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    scheduled_date = Column(Text, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    location = Column(Text)
    meeting_link = Column(Text)
    status = Column(String, nullable=False, default="scheduled")
    notes = Column(Text)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")

    process = relationship("SelectionProcess", back_populates="interviews")


class EvaluationTemplate(Base):
    __tablename__ = "evaluation_templates"
    __table_args__ = (CheckConstraint("passing_score <= max_score", name="ck_passing_le_max"),)
    _ranges = {"max_score": (1, 100), "passing_score": (0, 100)}

    id = Column(String, primary_key=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    position_type = Column(Text, nullable=False)
    max_score = Column(Integer, nullable=False, default=100)
    passing_score = Column(Integer, nullable=False, default=70)
    created_by = Column(String, ForeignKey("profiles.id", ondelete="SET NULL"))
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")

    criteria = relationship(
        "EvaluationCriterion",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="EvaluationCriterion.order_index",
    )


class EvaluationCriterion(Base):
    __tablename__ = "evaluation_criteria"
    __table_args__ = (CheckConstraint("min_score <= max_score", name="ck_min_le_max"),)
    _ranges = {"weight": (1, 100), "min_score": (0, 1000), "max_score": (1, 1000)}

    id = Column(String, primary_key=True)
    template_id = Column(String, ForeignKey("evaluation_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    weight = Column(Integer, nullable=False, default=1)
    min_score = Column(Integer, nullable=False, default=0)
    max_score = Column(Integer, nullable=False, default=10)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(Text, nullable=False, default="")

    template = relationship("EvaluationTemplate", back_populates="criteria")


class SkillAssessment(Base):
    __tablename__ = "skill_assessments"
    _ranges = {"time_limit_minutes": (1, 24 * 60), "passing_score": (0, 100)}

    id = Column(String, primary_key=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    skill_type = Column(Text, nullable=False)
    time_limit_minutes = Column(Integer)
    passing_score = Column(Integer, nullable=False, default=70)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String, ForeignKey("profiles.id", ondelete="SET NULL"))
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")

    questions = relationship(
        "AssessmentQuestion",
        back_populates="assessment",
        cascade="all, delete-orphan",
        order_by="AssessmentQuestion.order_index",
    )
    results = relationship("AssessmentResult", back_populates="assessment", cascade="all, delete-orphan")


class AssessmentQuestion(Base):
    __tablename__ = "assessment_questions"
    __table_args__ = (_in("question_type", QUESTION_TYPES),)
    _enums = {"question_type": QUESTION_TYPES}
    _ranges = {"points": (0, 1000)}

    id = Column(String, primary_key=True)
    assessment_id = Column(String, ForeignKey("skill_assessments.id", ondelete="CASCADE"), nullable=False, index=True)
    question = Column(Text, nullable=False)
    question_type = Column(String, nullable=False)
    options = Column(JSON)
    correct_answer = Column(Text)
    points = Column(Integer, nullable=False, default=1)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(Text, nullable=False, default="")

    assessment = relationship("SkillAssessment", back_populates="questions")


class AssessmentResult(Base):
    __tablename__ = "assessment_results"
    __table_args__ = (
        _in("status", RESULT_STATUSES),
        CheckConstraint("score IS NULL OR (score >= 0 AND score <= 100)", name="ck_result_score_range"),
    )
    _enums = {"status": RESULT_STATUSES}
    _ranges = {"score": (0, 100)}

    id = Column(String, primary_key=True)
    assessment_id = Column(String, ForeignKey("skill_assessments.id", ondelete="CASCADE"), nullable=False, index=True)
    candidate_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    process_id = Column(String, ForeignKey("selection_processes.id", ondelete="CASCADE"))
    start_time = Column(Text, nullable=False, default="")
    end_time = Column(Text)
    score = Column(Integer)
    answers = Column(JSON)
    status = Column(String, nullable=False, default="in_progress")
    created_at = Column(Text, nullable=False, default="")

    assessment = relationship("SkillAssessment", back_populates="results")
    process = relationship("SelectionProcess", back_populates="results")


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (_in("type", DOCUMENT_TYPES), _in("status", DOCUMENT_STATUSES))
    _enums = {"type": DOCUMENT_TYPES, "status": DOCUMENT_STATUSES}

    id = Column(String, primary_key=True)
    title = Column(Text, nullable=False)
    type = Column(String, nullable=False)
    file_url = Column(Text, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    status = Column(String, nullable=False, default="pending")
    expiry_date = Column(Text)
    user_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(Text, nullable=False, default="")
    updated_at = Column(Text, nullable=False, default="")

    versions = relationship(
        "DocumentVersion", back_populates="document", cascade="all, delete-orphan", order_by="DocumentVersion.version"
    )
    approvals = relationship("DocumentApproval", back_populates="document", cascade="all, delete-orphan")


class DocumentVersion(Base):
    __tablename__ = "document_versions"

    id = Column(String, primary_key=True)
    document_id = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    file_url = Column(Text, nullable=False)
    created_at = Column(Text, nullable=False, default="")

    document = relationship("Document", back_populates="versions")


class DocumentApproval(Base):
    __tablename__ = "document_approvals"
    __table_args__ = (_in("status", APPROVAL_STATUSES),)
    _enums = {"status": APPROVAL_STATUSES}

    id = Column(String, primary_key=True)
    document_id = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    status = Column(String, nullable=False)
    comments = Column(Text)
    created_at = Column(Text, nullable=False, default="")

    document = relationship("Document", back_populates="approvals")


class Message(Base):
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    sender_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    receiver_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    attachment_url = Column(Text)
    created_at = Column(Text, nullable=False, default="")
    read = Column(Boolean, nullable=False, default=False)
    application_id = Column(String, ForeignKey("applications.id", ondelete="CASCADE"), index=True)

    application = relationship("Application", back_populates="messages")


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (_in("type", NOTIFICATION_TYPES),)
    _enums = {"type": NOTIFICATION_TYPES}

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(Text, nullable=False, default="", index=True)
    related_id = Column(String)


class EmailNotification(Base):
    __tablename__ = "email_notifications"
    __table_args__ = (_in("type", EMAIL_TYPES), _in("status", EMAIL_STATUSES))
    _enums = {"type": EMAIL_TYPES, "status": EMAIL_STATUSES}

    id = Column(String, primary_key=True)
    type = Column(String, nullable=False)
    recipient_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    subject = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    sent_at = Column(Text)
    status = Column(String, nullable=False, default="pending", index=True)
    error_message = Column(Text)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(Text, nullable=False, default="")


class Activity(Base):
    __tablename__ = "activities"
    __table_args__ = (_in("type", ACTIVITY_TYPES),)
    _enums = {"type": ACTIVITY_TYPES}

    id = Column(String, primary_key=True)
    type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    created_at = Column(Text, nullable=False, default="", index=True)
    user_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    offer_id = Column(String, ForeignKey("job_offers.id", ondelete="SET NULL"))
