"""数据模型定义：管理员账号、登录尝试、审计日志等安全状态的 SQLAlchemy ORM 类。

课程与视频内容不在这里，它们仍由 store.JsonCollection 读写 JSON 文件。
"""

from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin

db = SQLAlchemy()


class AdminUser(UserMixin, db.Model):
    """后台管理员账户：密码只存 werkzeug 哈希（盐已编码在哈希串里）。"""

    __tablename__ = 'admin_users'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, index=True, nullable=False)
    role = db.Column(db.String(30), default='admin')
    password_hash = db.Column(db.String(255), nullable=False)
    is_enabled = db.Column(db.Boolean, default=True)
    locked = db.Column(db.Boolean, default=False)        # 连续失败 5 次后置为 True，锁定到期自动解除
    failed_attempts = db.Column(db.Integer, default=0)
    last_login = db.Column(db.BigInteger)                # 毫秒时间戳
    created_at = db.Column(db.BigInteger)
    updated_at = db.Column(db.BigInteger)
    two_factor_secret = db.Column(db.String(64))
    two_factor_enabled = db.Column(db.Boolean, default=False)

    @property
    def is_active(self):
        return bool(self.is_enabled) and not self.locked

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'role': self.role,
            'isEnabled': bool(self.is_enabled),
            'locked': bool(self.locked),
            'failedAttempts': self.failed_attempts or 0,
            'lastLogin': self.last_login,
            'twoFactorEnabled': bool(self.two_factor_enabled),
        }


class LoginAttempt(db.Model):
    """按用户名统计的失败次数与锁定起始时间（用户名不存在也会计数）。"""

    __tablename__ = 'login_attempts'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, index=True, nullable=False)
    count = db.Column(db.Integer, default=0)
    last_attempt = db.Column(db.BigInteger)
    locked_at = db.Column(db.BigInteger)                 # None 表示未锁定


class AuditLog(db.Model):
    """审计日志：只追加，超过上限时淘汰最旧的记录。"""

    __tablename__ = 'audit_logs'
    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.BigInteger, index=True)
    event = db.Column(db.String(100), index=True)
    details = db.Column(db.JSON, default=dict)
    level = db.Column(db.String(10), default='info')     # info / warning / error
    user_agent = db.Column(db.String(255))
    ip = db.Column(db.String(64))

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': self.timestamp,
            'event': self.event,
            'details': self.details or {},
            'level': self.level,
            'userAgent': self.user_agent,
            'ip': self.ip,
        }


class RevokedToken(db.Model):
    """登出后作废的 token（按 jti 记录，过期后可清理）。"""

    __tablename__ = 'revoked_tokens'
    jti = db.Column(db.String(64), primary_key=True)
    expires_at = db.Column(db.BigInteger)
