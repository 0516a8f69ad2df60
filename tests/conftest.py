import json
import os
import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# 必须在导入 app 之前设置：测试使用内存 SQLite 和固定签名密钥
os.environ.setdefault("COURSE_FEED_DATABASE_URL", "sqlite://")
os.environ.setdefault("COURSE_FEED_TOKEN_SECRET", "test-token-secret-0123456789abcdef")

import admin_auth  # noqa: E402
import app as app_module  # noqa: E402
from models import db  # noqa: E402
from online_stats import OnlineUserStats  # noqa: E402
from playlist import AppSettings  # noqa: E402

ADMIN_PASSWORD = "TikTokEdu@2024!"

COURSES = [
    {"id": 1, "tag": "introduce", "name": "平台介绍", "description": "", "avatar": ""},
    {"id": 2, "tag": "1200", "name": "高数 1200 题", "description": "", "avatar": ""},
    {"id": 3, "tag": "linear", "name": "线性代数", "description": "", "avatar": ""},
]

VIDEOS = (
    [{"id": 100 + i, "courseName": "introduce", "sequence": i} for i in range(1, 3)]
    + [{"id": 200 + i, "courseName": "1200", "sequence": i} for i in range(1, 11)]
    + [{"id": 301, "courseName": "linear", "sequence": 1}]
)


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    (path / "courses.json").write_text(json.dumps(COURSES, ensure_ascii=False), encoding="utf-8")
    (path / "videos.json").write_text(json.dumps(VIDEOS, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def flask_app(data_dir, monkeypatch):
    flask_app = app_module.app
    monkeypatch.setitem(flask_app.config, "TESTING", True)
    monkeypatch.setitem(flask_app.config, "DATA_DIR", str(data_dir))
    monkeypatch.setitem(flask_app.config, "DEFAULT_ADMIN_USERNAME", "admin")
    monkeypatch.setitem(flask_app.config, "DEFAULT_ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setattr(app_module, "app_settings", AppSettings())
    monkeypatch.setattr(app_module, "online_stats", OnlineUserStats())
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        admin_auth.initialize()
    return flask_app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def app_ctx(flask_app):
    """直接调用服务层函数时使用；不要与 client 混用，以免 g 在请求间共享。"""
    with flask_app.app_context():
        yield flask_app
