from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()

USER_ROLES = ('admin', 'user')
PROJECT_STATUSES = ('active', 'inactive', 'done')
TASK_STATUSES = ('to-do', 'in-progress', 'done', 'blocked')

# 參照欄位 (projects / members / tasks) 都是存 id 的 JSON list,
# 沒有 foreign key,所以刪除時可能留下孤兒參照,由 references.py 負責同步


def _isoformat(value):
    return value.isoformat() if value else None


# ============================================
# 1. User 模型
# ============================================
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    secret_key_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='user')  # admin, user

    # 使用者參與的專案 id
    projects = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        """不包含 password / secret key 的 hash"""
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': self.role,
            'projects': list(self.projects or []),
            'createdAt': _isoformat(self.created_at)
        }

    def __repr__(self):
        return f'<User {self.email}>'


# ============================================
# 2. Project 模型
# ============================================
class Project(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='active')  # active, inactive, done

    # 建立者,建立後不可修改
    created_by = db.Column(db.Integer, nullable=False, index=True)

    members = db.Column(db.JSON, nullable=False, default=list)
    tasks = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('idx_project_status', 'status'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'createdBy': self.created_by,
            'members': list(self.members or []),
            'tasks': list(self.tasks or []),
            'createdAt': _isoformat(self.created_at)
        }

    def __repr__(self):
        return f'<Project {self.id} {self.title}>'


# ============================================
# 3. Task 模型
# ============================================
class Task(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='to-do')  # to-do, in-progress, done, blocked

    # 自由格式的負責人識別字串
    assigned_to = db.Column(db.JSON, nullable=False, default=list)
    finished_by = db.Column(db.String(255), default='Not finished.')

    project_id = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('idx_task_project_status', 'project_id', 'status'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'assignedTo': list(self.assigned_to or []),
            'finishedBy': self.finished_by,
            'project': self.project_id,
            'createdAt': _isoformat(self.created_at)
        }

    def __repr__(self):
        return f'<Task {self.id} {self.title}>'
