"""Flask 入口：课程/视频内容接口、播放列表与设置接口、后台管理员认证与安全面板接口。"""

import os

from flask import Flask, g, jsonify, request
from flask_login import LoginManager, current_user, login_required

import admin_auth
import security
from config import Config
from models import db
from online_stats import OnlineUserStats
from playlist import AppSettings, SettingsError, build_playlist
from store import JsonCollection, RecordNotFound, StoreError

app = Flask(__name__)
app.config.from_object(Config)
app.json.ensure_ascii = False

db.init_app(app)

# 启动时建表并初始化默认管理员（数据库不可用时只告警，不阻止启动）
try:
    with app.app_context():
        db.create_all()
        admin_auth.initialize()
except Exception as exc:
    app.logger.warning("Skipping admin store initialisation during startup: %s", exc)

login_manager = LoginManager()
login_manager.init_app(app)

# 播放设置只保存在内存里，重启后恢复默认
app_settings = AppSettings()
online_stats = OnlineUserStats()

RESOURCES = {
    'courses': ('courses.json', 'course'),
    'videos': ('videos.json', 'video'),
}


@login_manager.request_loader
def load_user_from_request(req):
    """Flask-Login 回调：从 Authorization: Bearer <token> 取出管理员。"""
    header = req.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    state = admin_auth.validate_session(header[len('Bearer '):].strip())
    if not state.valid:
        return None
    g.token_payload = state.payload
    g.needs_renewal = state.needs_renewal
    return state.user


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'msg': '未登录或会话已失效'}), 401


def get_collection(resource: str) -> JsonCollection:
    filename, label = RESOURCES[resource]
    return JsonCollection(os.path.join(app.config['DATA_DIR'], filename), label)


def json_body():
    """读取请求体，必须是 JSON 对象；否则返回 None。"""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def warn_on_loose_references(resource: str, record: dict) -> None:
    """课程 tag 不强制唯一、视频 courseName 不强制存在，这里只记告警。"""
    try:
        courses = get_collection('courses').list_all()
    except StoreError:
        return
    if resource == 'courses' and 'tag' in record:
        same_tag = [c for c in courses if c.get('tag') == record['tag'] and c.get('id') != record.get('id')]
        if same_tag:
            app.logger.warning("Duplicate course tag %r (ids %s)", record['tag'], [c.get('id') for c in same_tag])
    elif resource == 'videos' and 'courseName' in record:
        if not any(c.get('tag') == record['courseName'] for c in courses):
            app.logger.warning("Video %s references unknown course %r", record.get('id'), record['courseName'])


# --- 内容接口（课程 / 视频） ---

def list_records(resource):
    try:
        return jsonify(get_collection(resource).list_all())
    except StoreError:
        return jsonify({'msg': f'Failed to load {resource}'}), 500


def create_record(resource):
    data = json_body()
    if data is None:
        return jsonify({'msg': '请求体必须是 JSON 对象'}), 400
    try:
        record = get_collection(resource).create(data)
    except StoreError:
        return jsonify({'msg': f'Failed to save {RESOURCES[resource][1]}'}), 500
    warn_on_loose_references(resource, record)
    return jsonify(record)


def update_record(resource, record_id):
    data = json_body()
    if data is None:
        return jsonify({'msg': '请求体必须是 JSON 对象'}), 400
    try:
        record = get_collection(resource).update(record_id, data)
    except RecordNotFound:
        return jsonify({'msg': f'{RESOURCES[resource][1]} not found'}), 404
    except StoreError:
        return jsonify({'msg': f'Failed to update {RESOURCES[resource][1]}'}), 500
    warn_on_loose_references(resource, record)
    return jsonify(record)


def delete_record(resource, record_id):
    try:
        return jsonify(get_collection(resource).delete(record_id))
    except RecordNotFound:
        return jsonify({'msg': f'{RESOURCES[resource][1]} not found'}), 404
    except StoreError:
        return jsonify({'msg': f'Failed to delete {RESOURCES[resource][1]}'}), 500


@app.route('/api/courses', methods=['GET'])
def get_courses():
    return list_records('courses')


@app.route('/api/courses', methods=['POST'])
def add_course():
    return create_record('courses')


@app.route('/api/courses/<int(signed=True):record_id>', methods=['PUT'])
def update_course(record_id):
    return update_record('courses', record_id)


@app.route('/api/courses/<int(signed=True):record_id>', methods=['DELETE'])
def remove_course(record_id):
    return delete_record('courses', record_id)


@app.route('/api/videos', methods=['GET'])
def get_videos():
    return list_records('videos')


@app.route('/api/videos', methods=['POST'])
def add_video():
    return create_record('videos')


@app.route('/api/videos/<int(signed=True):record_id>', methods=['PUT'])
def update_video(record_id):
    return update_record('videos', record_id)


@app.route('/api/videos/<int(signed=True):record_id>', methods=['DELETE'])
def remove_video(record_id):
    return delete_record('videos', record_id)


# --- 播放列表与设置 ---

@app.route('/api/playlist/<course_tag>')
def get_playlist(course_tag):
    """每次请求都重新打乱并插入介绍视频，相当于前端切换课程时的重新生成。"""
    try:
        courses = get_collection('courses').list_all()
        videos = get_collection('videos').list_all()
    except StoreError:
        return jsonify({'msg': 'Failed to load playlist data'}), 500
    try:
        items = build_playlist(courses, videos, course_tag, app_settings)
    except SettingsError as exc:
        return jsonify({'msg': str(exc)}), 400
    return jsonify({'courseTag': course_tag, 'items': [item.to_dict() for item in items]})


@app.route('/api/settings', methods=['GET'])
def get_settings():
    return jsonify(app_settings.to_dict())


@app.route('/api/settings', methods=['PUT'])
def update_settings():
    global app_settings
    try:
        app_settings = app_settings.merged(json_body())
    except SettingsError as exc:
        return jsonify({'msg': str(exc)}), 400
    return jsonify(app_settings.to_dict())


# --- 管理员认证 ---

@app.route('/api/admin/login', methods=['POST'])
def admin_login():
    data = json_body() or {}
    result = admin_auth.authenticate(data.get('username'), data.get('password'), data.get('totpCode'))
    if result.success:
        return jsonify(result.to_dict())
    status = 423 if result.lockout_remaining is not None else 401
    return jsonify(result.to_dict()), status


@app.route('/api/admin/refresh', methods=['POST'])
def admin_refresh():
    data = json_body() or {}
    state = admin_auth.refresh_session(data.get('refreshToken'))
    if not state.valid:
        return jsonify({'msg': 'refresh token 无效或已过期'}), 401
    return jsonify({'token': state.token, 'user': state.user.to_dict()})


@app.route('/api/admin/session')
@login_required
def admin_session():
    return jsonify({'user': current_user.to_dict(), 'needsRenewal': g.needs_renewal,
                    'expiresAt': g.token_payload['exp']})


@app.route('/api/admin/logout', methods=['POST'])
@login_required
def admin_logout():
    data = json_body() or {}
    admin_auth.logout(g.token_payload, data.get('refreshToken'))
    return jsonify({'msg': '已登出'})


@app.route('/api/admin/password', methods=['POST'])
@login_required
def admin_change_password():
    data = json_body() or {}
    ok, error = admin_auth.change_password(current_user, data.get('oldPassword'), data.get('newPassword'))
    if not ok:
        return jsonify({'msg': error}), 400
    return jsonify({'msg': '密码修改成功'})


@app.route('/api/admin/2fa/setup', methods=['POST'])
@login_required
def admin_setup_two_factor():
    return jsonify(admin_auth.setup_two_factor(current_user))


@app.route('/api/admin/2fa/enable', methods=['POST'])
@login_required
def admin_enable_two_factor():
    data = json_body() or {}
    if not admin_auth.enable_two_factor(current_user, data.get('code')):
        return jsonify({'msg': '二级验证码错误'}), 400
    return jsonify({'msg': '二级验证已启用'})


# --- 安全面板 ---

@app.route('/api/admin/audit_logs', methods=['GET'])
@login_required
def admin_audit_logs():
    """审计日志：带 q/from/to 参数时走搜索，否则分页返回。"""
    query = request.args.get('q')
    from_ms = request.args.get('from', type=int)
    to_ms = request.args.get('to', type=int)
    if query is not None or from_ms is not None or to_ms is not None:
        logs = security.search_audit_logs(query or '', from_ms, to_ms)
        return jsonify({'logs': logs, 'total': len(logs)})
    page = request.args.get('page', 1, type=int)
    page_size = request.args.get('page_size', 50, type=int)
    return jsonify(security.get_audit_logs(page, page_size))


@app.route('/api/admin/audit_logs', methods=['DELETE'])
@login_required
def admin_clear_audit_logs():
    if not admin_auth.clear_audit_logs(current_user):
        return jsonify({'msg': '仅超级管理员可清除审计日志'}), 403
    return jsonify({'msg': '审计日志已清除'})


@app.route('/api/admin/security_status')
@login_required
def admin_security_status():
    return jsonify(admin_auth.security_status())


@app.route('/api/admin/online_stats', methods=['GET', 'POST'])
@login_required
def admin_online_stats():
    """GET 读取当前模拟数据；POST 触发一次手动刷新。"""
    stats = online_stats.refresh() if request.method == 'POST' else online_stats.snapshot()
    return jsonify({'stats': stats, 'activeSessions': online_stats.active_sessions()})


if __name__ == '__main__':
    app.run(debug=True, port=int(os.environ.get('PORT', 3000)))
