"""管理员认证服务：登录状态机、会话校验/续期、改密、二级验证与审计查询。"""

from dataclasses import dataclass, field
from typing import Optional

from flask import current_app

import security
from config import MAX_LOGIN_ATTEMPTS, REFRESH_TOKEN_TIMEOUT_MS, SESSION_TIMEOUT_MS
from models import db, AdminUser, AuditLog

SUPER_ADMIN = 'super_admin'
DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class AuthResult:
    success: bool
    error: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    requires_two_factor: bool = False
    lockout_remaining: Optional[int] = None

    def to_dict(self):
        data = {'success': self.success}
        if self.error:
            data['error'] = self.error
        if self.access_token:
            data['token'] = self.access_token
            data['refreshToken'] = self.refresh_token
        if self.requires_two_factor:
            data['requiresTwoFactor'] = True
        if self.lockout_remaining is not None:
            data['lockoutRemaining'] = self.lockout_remaining
        return data


@dataclass
class SessionState:
    valid: bool
    user: Optional[AdminUser] = None
    payload: dict = field(default_factory=dict)
    needs_renewal: bool = False
    token: Optional[str] = None


def _claims(user: AdminUser) -> dict:
    return {'userId': user.id, 'username': user.username, 'role': user.role}


def get_user_by_username(username):
    return AdminUser.query.filter_by(username=username).first()


def initialize(now=None) -> AdminUser:
    """首次启动时创建默认超级管理员（已存在则跳过）。"""
    username = current_app.config['DEFAULT_ADMIN_USERNAME']
    user = get_user_by_username(username)
    if user is not None:
        return user
    now = security.now_ms() if now is None else now
    user = AdminUser(
        username=username,
        role=SUPER_ADMIN,
        password_hash=security.hash_password(current_app.config['DEFAULT_ADMIN_PASSWORD']),
        is_enabled=True,
        locked=False,
        failed_attempts=0,
        created_at=now,
        updated_at=now,
        two_factor_enabled=False,
    )
    db.session.add(user)
    db.session.commit()
    security.audit_log('默认管理员账户初始化', {'username': username})
    return user


def _register_failure(username, user=None, now=None):
    """记录一次失败；达到上限时同步锁定账户。"""
    count = security.record_failed_attempt(username, now=now)
    if user is not None:
        user.failed_attempts = (user.failed_attempts or 0) + 1
        user.updated_at = security.now_ms() if now is None else now
        if user.failed_attempts >= MAX_LOGIN_ATTEMPTS:
            user.locked = True
        db.session.commit()
    if count == MAX_LOGIN_ATTEMPTS:
        security.audit_log('账户自动锁定', {'username': username, 'attempts': count}, 'warning', now=now)


def issue_tokens(user: AdminUser, now=None):
    access = security.generate_token(_claims(user), SESSION_TIMEOUT_MS, now=now)
    refresh = security.generate_token({**_claims(user), 'type': 'refresh'}, REFRESH_TOKEN_TIMEOUT_MS, now=now)
    return access, refresh


def authenticate(username, password, totp_code=None, now=None) -> AuthResult:
    """管理员登录。各种失败结果都会写审计日志，并始终允许用户重试（受锁定限制）。"""
    try:
        if not isinstance(username, str) or not isinstance(password, str) or not username or not password:
            security.audit_log('登录失败 - 缺少凭据',
                               {'username': username if isinstance(username, str) else None}, 'warning', now=now)
            return AuthResult(False, error='请输入用户名和密码')

        if security.is_account_locked(username, now=now):
            remaining = security.get_remaining_lockout(username, now=now)
            security.audit_log('登录失败 - 账户锁定', {'username': username, 'remaining': remaining}, 'warning', now=now)
            return AuthResult(False, error='账户已被锁定，请稍后再试', lockout_remaining=remaining)

        user = get_user_by_username(username)
        if user is None:
            _register_failure(username, now=now)
            security.audit_log('登录失败 - 用户不存在', {'username': username}, 'warning', now=now)
            return AuthResult(False, error='用户名或密码错误')

        if not user.is_enabled or user.locked:
            security.audit_log('登录失败 - 账户禁用', {'username': username}, 'warning', now=now)
            return AuthResult(False, error='账户已禁用，请联系管理员')

        if not security.verify_password(user.password_hash, password):
            _register_failure(username, user, now=now)
            security.audit_log('登录失败 - 密码错误', {'username': username}, 'warning', now=now)
            return AuthResult(False, error='用户名或密码错误')

        if user.two_factor_enabled:
            if not totp_code:
                security.audit_log('登录待验证 - 需要二级验证', {'username': username}, now=now)
                return AuthResult(False, error='请输入二级验证码', requires_two_factor=True)
            if not security.verify_totp(user.two_factor_secret, totp_code, now=now):
                _register_failure(username, user, now=now)
                security.audit_log('登录失败 - 2FA验证失败', {'username': username}, 'warning', now=now)
                return AuthResult(False, error='二级验证码错误', requires_two_factor=True)

        security.clear_failed_attempts(username)
        user.last_login = security.now_ms() if now is None else now
        user.updated_at = user.last_login
        user.failed_attempts = 0
        db.session.commit()

        access, refresh = issue_tokens(user, now=now)
        security.audit_log('登录成功', {'username': username, 'userId': user.id, 'role': user.role}, now=now)
        return AuthResult(True, access_token=access, refresh_token=refresh)

    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Admin login failed for %r", username)
        security.audit_log('登录异常', {'username': str(username), 'error': str(exc)}, 'error', now=now)
        return AuthResult(False, error='登录过程中发生错误')


def validate_session(token, now=None) -> SessionState:
    """校验访问 token，并确认账户仍然可用；临近过期时提示续期。"""
    try:
        payload = security.verify_token(token, now=now)
    except security.TokenError:
        return SessionState(False)
    if payload.get('type') == 'refresh':
        return SessionState(False)

    user = db.session.get(AdminUser, payload.get('userId'))
    if user is None or not user.is_enabled or user.locked:
        security.audit_log('会话失效 - 用户状态变更', {'userId': payload.get('userId')}, 'warning')
        return SessionState(False)

    return SessionState(True, user=user, payload=payload,
                        needs_renewal=security.is_token_expiring(payload, now=now), token=token)


def refresh_session(refresh_token, now=None) -> SessionState:
    """用 refresh token 换新的访问 token，无需重新输入密码。"""
    try:
        payload = security.verify_token(refresh_token, now=now)
    except security.TokenError:
        return SessionState(False)
    if payload.get('type') != 'refresh':
        return SessionState(False)

    user = db.session.get(AdminUser, payload.get('userId'))
    if user is None or not user.is_enabled or user.locked:
        return SessionState(False)

    token = security.generate_token(_claims(user), SESSION_TIMEOUT_MS, now=now)
    security.audit_log('会话刷新', {'username': user.username})
    return SessionState(True, user=user, payload=security.verify_token(token, now=now), token=token)


def logout(access_payload: dict, refresh_token=None) -> None:
    security.revoke_token(access_payload)
    if refresh_token:
        try:
            security.revoke_token(security.verify_token(refresh_token))
        except security.TokenError:
            pass  # refresh token 已失效，无需再作废
    security.audit_log('用户登出', {'username': access_payload.get('username')})


def change_password(user: AdminUser, old_password, new_password):
    """修改密码：校验旧密码与新密码强度。返回 (成功, 错误信息)。"""
    if not isinstance(old_password, str) or not isinstance(new_password, str):
        return False, '密码格式不正确'
    if not security.verify_password(user.password_hash, old_password):
        security.audit_log('密码更改失败 - 旧密码错误', {'userId': user.id}, 'warning')
        return False, '旧密码错误'

    errors = security.validate_password(new_password or '')
    if errors:
        return False, ', '.join(errors)

    user.password_hash = security.hash_password(new_password)
    user.updated_at = security.now_ms()
    db.session.commit()
    security.audit_log('密码更改成功', {'userId': user.id})
    return True, None


def setup_two_factor(user: AdminUser) -> dict:
    """生成新的 TOTP 密钥（尚未启用，需 enable_two_factor 验证一次）。"""
    secret = security.generate_totp_secret()
    user.two_factor_secret = secret
    user.two_factor_enabled = False
    db.session.commit()
    security.audit_log('二级验证初始化', {'userId': user.id})
    return {'secret': secret, 'qrCodeUrl': security.totp_uri(secret, user.username)}


def enable_two_factor(user: AdminUser, code, now=None) -> bool:
    if not security.verify_totp(user.two_factor_secret, code, now=now):
        security.audit_log('二级验证启用失败', {'userId': user.id}, 'warning')
        return False
    user.two_factor_enabled = True
    db.session.commit()
    security.audit_log('二级验证已启用', {'userId': user.id})
    return True


def clear_audit_logs(user: AdminUser) -> bool:
    """清空审计日志，仅超级管理员可操作；清空后留下一条记录。"""
    if user is None or user.role != SUPER_ADMIN:
        return False
    security.clear_audit_logs()
    security.audit_log('审计日志已清除', {'adminUserId': user.id})
    return True


def security_status(now=None) -> dict:
    now = security.now_ms() if now is None else now
    users = AdminUser.query.all()
    failed_recent = AuditLog.query.filter(
        AuditLog.event.like('登录失败%'),
        AuditLog.timestamp > now - DAY_MS,
    ).count()
    last_activity = db.session.query(db.func.max(AuditLog.timestamp)).scalar() or 0
    return {
        'totalUsers': len(users),
        'enabledUsers': sum(1 for u in users if u.is_enabled),
        'lockedUsers': sum(1 for u in users if u.locked),
        'usersWithTwoFactor': sum(1 for u in users if u.two_factor_enabled),
        'totalLogs': AuditLog.query.count(),
        'recentFailedLogins': failed_recent,
        'lastActivity': last_activity,
    }
