from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value is not None else None


class User(db.Model):
    """Local mirror of an identity-provider account."""

    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True)  # Supabase auth user id
    email = db.Column(db.String(255), unique=True, nullable=False)
    full_name = db.Column(db.String(150), nullable=True)
    department = db.Column(db.String(100), nullable=True)
    role = db.Column(db.String(20), nullable=False)  # student, teacher, admin
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    # Relationships
    student_profile = db.relationship(
        "Student", backref="user", uselist=False, cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "department": self.department,
            "role": self.role,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"


class Student(db.Model):
    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), unique=True, nullable=False
    )
    reg_no = db.Column(db.String(30), unique=True, nullable=False)
    department = db.Column(db.String(100), nullable=True)
    semester = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "reg_no": self.reg_no,
            "department": self.department,
            "semester": self.semester,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Student {self.reg_no}>"


class Mark(db.Model):
    __tablename__ = "marks"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    subject_code = db.Column(db.String(20), nullable=False)
    subject_name = db.Column(db.String(150), nullable=False)
    score = db.Column(db.Integer, nullable=False)
    total_score = db.Column(db.Integer, nullable=False, default=100)
    grade = db.Column(db.String(2), nullable=False)  # P or F
    status = db.Column(db.String(10), nullable=False)  # Pass, Fail
    reg_no = db.Column(db.String(30), nullable=True)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    # Constraints
    __table_args__ = (
        db.UniqueConstraint(
            "student_id", "subject_code", name="unique_student_subject"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "subject_code": self.subject_code,
            "subject_name": self.subject_name,
            "score": self.score,
            "total_score": self.total_score,
            "grade": self.grade,
            "status": self.status,
            "reg_no": self.reg_no,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Mark {self.subject_code} {self.score}/{self.total_score}>"


class RevaluationRequest(db.Model):
    __tablename__ = "revaluation_requests"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    subject_code = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="SUBMITTED")
    # Stored as a JSON list of "/uploads/<filename>" paths
    answer_script_urls = db.Column(db.JSON, nullable=False, default=list)
    ocr_text = db.Column(db.Text, nullable=True)
    revised_score = db.Column(db.Integer, nullable=True)
    teacher_remarks = db.Column(db.Text, nullable=True)
    reviewed_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())
    updated_at = db.Column(
        db.DateTime,
        default=db.func.current_timestamp(),
        onupdate=db.func.current_timestamp(),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "subject_code": self.subject_code,
            "status": self.status,
            "answer_script_urls": list(self.answer_script_urls or []),
            "ocr_text": self.ocr_text,
            "revised_score": self.revised_score,
            "teacher_remarks": self.teacher_remarks,
            "reviewed_by": self.reviewed_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<RevaluationRequest {self.id} {self.subject_code} ({self.status})>"


class Subject(db.Model):
    """Subject catalog managed by admins."""

    __tablename__ = "subjects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    name = db.Column(db.String(150), nullable=False)
    department = db.Column(db.String(100), nullable=False)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "department": self.department,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Subject {self.code}>"


class AllowedTeacher(db.Model):
    __tablename__ = "allowed_teachers"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    def __repr__(self):
        return f"<AllowedTeacher {self.email}>"
