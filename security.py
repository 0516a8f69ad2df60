"""安全基础组件：密码哈希、签名 token、登录尝试限制、审计日志、TOTP。

所有需要时钟的函数都接受可选的 now（毫秒），不传时取当前时间，方便测试控制时钟。
"""

import base64
import binascii
import hashlib
import hmac
import json
import re
import secrets
import struct
import time
from urllib.parse import quote

import jwt
from flask import current_app, has_request_context, request
from werkzeug.security import check_password_hash, generate_password_hash

from config import (
    AUDIT_LOG_LIMIT,
    LOCKOUT_DURATION_MS,
    MAX_LOGIN_ATTEMPTS,
    PASSWORD_HASH_METHOD,
    PASSWORD_MIN_LENGTH,
    PASSWORD_SPECIAL_CHARS,
    RENEWAL_WINDOW_MS,
    TOTP_DIGITS,
    TOTP_ISSUER,
    TOTP_PERIOD,
)
from models import db, AdminUser, AuditLog, LoginAttempt, RevokedToken

TOKEN_ALGORITHM = 'HS256'


def now_ms() -> int:
    return int(time.time() * 1000)


# --- 密码 ---

def hash_password(password: str) -> str:
    return generate_password_hash(password, method=PASSWORD_HASH_METHOD)


def verify_password(stored: str, candidate: str) -> bool:
    """安全校验密码，遇到坏数据返回 False 而不是抛异常。"""
    if not isinstance(stored, str) or not isinstance(candidate, str) or not stored or not candidate:
        return False
    try:
        return check_password_hash(stored, candidate)
    except ValueError:
        return False


def validate_password(password: str) -> list:
    """密码强度检查，返回错误信息列表；空列表表示通过。"""
    if not isinstance(password, str):
        return ['密码格式不正确']
    errors = []
    if len(password or '') < PASSWORD_MIN_LENGTH:
        errors.append(f'密码长度至少{PASSWORD_MIN_LENGTH}位')
    if not re.search(r'[A-Z]', password or ''):
        errors.append('密码必须包含大写字母')
    if not re.search(r'[a-z]', password or ''):
        errors.append('密码必须包含小写字母')
    if not re.search(r'\d', password or ''):
        errors.append('密码必须包含数字')
    if not any(ch in PASSWORD_SPECIAL_CHARS for ch in password or ''):
        errors.append('密码必须包含特殊字符')
    return errors


# --- Token ---

class TokenError(Exception):
    """token 格式/签名/过期/作废等校验失败。"""


def _secret() -> str:
    return current_app.config['TOKEN_SECRET']


def generate_token(claims: dict, expires_in: int, now=None) -> str:
    """签发 HS256 JWT，payload 带 iat/exp（毫秒）和 jti。"""
    now = now_ms() if now is None else now
    payload = {**claims, 'iat': now, 'exp': now + expires_in, 'jti': secrets.token_hex(16)}
    return jwt.encode(payload, _secret(), algorithm=TOKEN_ALGORITHM)


def verify_token(token: str, now=None) -> dict:
    """校验签名与有效期，返回 payload；失败抛 TokenError。

    iat/exp 以毫秒存储，PyJWT 自带的时间校验按秒计算，所以关掉后在这里自己比对。
    """
    if not isinstance(token, str) or not token:
        raise TokenError('无效的token格式')
    try:
        decoded = jwt.decode(
            token, _secret(), algorithms=[TOKEN_ALGORITHM],
            options={'verify_exp': False, 'verify_iat': False, 'verify_nbf': False},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError('Token已过期') from exc
    except jwt.InvalidSignatureError as exc:
        raise TokenError('无效的token签名') from exc
    except jwt.DecodeError as exc:
        raise TokenError('无效的token格式') from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError('Token解析失败') from exc
    if not isinstance(decoded.get('exp'), int):
        raise TokenError('Token解析失败')
    now = now_ms() if now is None else now
    if now > decoded['exp']:
        raise TokenError('Token已过期')
    jti = decoded.get('jti')
    if jti and db.session.get(RevokedToken, jti) is not None:
        raise TokenError('Token已失效')
    return decoded


def is_token_expiring(payload: dict, now=None) -> bool:
    """剩余有效期不足 15 分钟时需要续期。"""
    now = now_ms() if now is None else now
    return payload['exp'] - now < RENEWAL_WINDOW_MS


def revoke_token(payload: dict) -> None:
    jti = payload.get('jti')
    if jti and db.session.get(RevokedToken, jti) is None:
        db.session.add(RevokedToken(jti=jti, expires_at=payload.get('exp')))
        db.session.commit()


# --- 登录尝试限制 ---

def _attempt_record(username):
    return LoginAttempt.query.filter_by(username=username).first()


def get_failed_attempts(username: str) -> int:
    record = _attempt_record(username)
    return record.count if record else 0


def record_failed_attempt(username: str, now=None) -> int:
    """失败次数 +1；达到上限时记录锁定起始时间。返回新的失败次数。"""
    now = now_ms() if now is None else now
    record = _attempt_record(username)
    if record is None:
        record = LoginAttempt(username=username, count=0)
        db.session.add(record)
    record.count = (record.count or 0) + 1
    record.last_attempt = now
    if record.count >= MAX_LOGIN_ATTEMPTS and record.locked_at is None:
        record.locked_at = now
    db.session.commit()
    return record.count


def clear_failed_attempts(username: str) -> None:
    """清除失败计数与锁定；对应账户的 locked 标记一并解除。"""
    record = _attempt_record(username)
    if record is not None:
        db.session.delete(record)
    user = AdminUser.query.filter_by(username=username).first()
    if user is not None and (user.locked or user.failed_attempts):
        user.locked = False
        user.failed_attempts = 0
    db.session.commit()


def is_account_locked(username: str, now=None) -> bool:
    """锁定期内返回 True；锁定到期后的第一次检查会清空计数并解锁。"""
    record = _attempt_record(username)
    if record is None or record.locked_at is None:
        return False
    now = now_ms() if now is None else now
    if now - record.locked_at > LOCKOUT_DURATION_MS:
        clear_failed_attempts(username)
        return False
    return True


def get_remaining_lockout(username: str, now=None) -> int:
    record = _attempt_record(username)
    if record is None or record.locked_at is None:
        return 0
    now = now_ms() if now is None else now
    return max(0, LOCKOUT_DURATION_MS - (now - record.locked_at))


# --- 审计日志 ---

def audit_log(event: str, details=None, level: str = 'info', now=None) -> AuditLog:
    """追加一条审计日志，超过上限时淘汰最旧的记录。"""
    entry = AuditLog(
        timestamp=now_ms() if now is None else now,
        event=event,
        details=details or {},
        level=level,
    )
    if has_request_context():
        entry.user_agent = (request.user_agent.string or '')[:255]
        entry.ip = request.remote_addr
    db.session.add(entry)
    db.session.commit()

    overflow = AuditLog.query.count() - AUDIT_LOG_LIMIT
    if overflow > 0:
        oldest = AuditLog.query.order_by(AuditLog.timestamp.asc(), AuditLog.id.asc()).limit(overflow).all()
        for row in oldest:
            db.session.delete(row)
        db.session.commit()
    return entry


def _newest_first(query):
    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())


def get_audit_logs(page: int = 1, page_size: int = 50) -> dict:
    page = max(page, 1)
    page_size = max(page_size, 1)
    total = AuditLog.query.count()
    rows = _newest_first(AuditLog.query).offset((page - 1) * page_size).limit(page_size).all()
    return {
        'logs': [row.to_dict() for row in rows],
        'total': total,
        'page': page,
        'pageSize': page_size,
        'totalPages': -(-total // page_size),
    }


def search_audit_logs(query: str = '', from_ms=None, to_ms=None) -> list:
    """按事件名/详情关键字（不区分大小写）和时间范围过滤。"""
    needle = (query or '').lower()
    q = AuditLog.query
    if from_ms is not None:
        q = q.filter(AuditLog.timestamp >= from_ms)
    if to_ms is not None:
        q = q.filter(AuditLog.timestamp <= to_ms)
    results = []
    for row in _newest_first(q).all():
        haystack = (row.event or '').lower() + json.dumps(row.details or {}, ensure_ascii=False).lower()
        if not needle or needle in haystack:
            results.append(row.to_dict())
    return results


def clear_audit_logs() -> None:
    AuditLog.query.delete()
    db.session.commit()


# --- TOTP (RFC 6238) ---

def generate_totp_secret() -> str:
    return base64.b32encode(secrets.token_bytes(20)).decode('ascii')


def totp_uri(secret: str, username: str) -> str:
    issuer = quote(TOTP_ISSUER)
    return (f"otpauth://totp/{issuer}:{quote(username)}?secret={secret}"
            f"&issuer={issuer}&digits={TOTP_DIGITS}&period={TOTP_PERIOD}")


def generate_totp(secret: str, now=None) -> str:
    now = now_ms() if now is None else now
    counter = (now // 1000) // TOTP_PERIOD
    key = base64.b32decode(secret.upper() + '=' * (-len(secret) % 8))
    digest = hmac.new(key, struct.pack('>Q', counter), hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code = (struct.unpack('>I', digest[offset:offset + 4])[0] & 0x7FFFFFFF) % (10 ** TOTP_DIGITS)
    return str(code).zfill(TOTP_DIGITS)


def verify_totp(secret: str, code: str, now=None) -> bool:
    if not secret or not code:
        return False
    try:
        expected = generate_totp(secret, now)
    except (ValueError, binascii.Error):
        return False
    return hmac.compare_digest(expected.encode('utf-8'), str(code).strip().encode('utf-8'))
