import enum
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _isoformat(value):
    return value.isoformat() if value else None


# ============================================
# 角色
# ============================================
class UserRole(enum.Enum):
    ADMIN = 'Admin'
    USER = 'User'

    @classmethod
    def values(cls):
        return [role.value for role in cls]


# ============================================
# 1. User 模型
# ============================================
class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(191), unique=True, nullable=True)
    phone_number = db.Column(db.String(191), unique=True, nullable=True)
    username = db.Column(db.String(191), unique=True, nullable=False)
    password = db.Column(db.String(191), nullable=False)  # bcrypt hash

    first_name = db.Column(db.String(191))
    last_name = db.Column(db.String(191))
    profile_picture = db.Column(db.String(500))
    role = db.Column(
        db.Enum(UserRole, name='user_role', values_callable=lambda roles: [r.value for r in roles]),
        nullable=False,
        default=UserRole.USER
    )

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 關聯 (刪除使用者時一併刪除任務)
    tasks = db.relationship(
        'Task',
        backref='owner',
        lazy=True,
        cascade='all,delete-orphan'
    )

    __table_args__ = (
        db.Index('idx_users_role', 'role'),
        db.Index('idx_users_created_at', 'created_at'),
    )

    def to_dict(self):
        """回傳給前端的格式,永遠不包含 password"""
        return {
            'id': self.id,
            'email': self.email,
            'phoneNumber': self.phone_number,
            'username': self.username,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'profilePicture': self.profile_picture,
            'role': self.role.value if self.role else None,
            'createdAt': _isoformat(self.created_at),
            'updatedAt': _isoformat(self.updated_at)
        }

    def __repr__(self):
        return f'<User {self.id} {self.username}>'


# ============================================
# 2. Task 模型
# ============================================
class Task(db.Model):
    __tablename__ = 'tasks'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    attachment = db.Column(db.String(500), nullable=True)

    user_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id', ondelete='CASCADE', onupdate='CASCADE'),
        nullable=False
    )

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 索引
    __table_args__ = (
        db.Index('idx_task_user_created', 'user_id', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'attachment': self.attachment,
            'userId': self.user_id,
            'createdAt': _isoformat(self.created_at),
            'updatedAt': _isoformat(self.updated_at)
        }

    def __repr__(self):
        return f'<Task {self.id} {self.name}>'
