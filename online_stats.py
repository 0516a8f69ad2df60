"""在线人数模拟：后台安全面板上展示用的演示数据，不代表真实访问量。"""

import random
import secrets
import time
from datetime import datetime

USER_AGENTS = [
    'Chrome/119.0 Windows', 'Chrome/118.0 macOS', 'Safari/17.0 iPhone', 'Chrome/119.0 Android',
    'Firefox/120.0 Windows', 'Edge/119.0 Windows', 'Safari/17.0 macOS', 'Chrome/119.0 Linux',
]
LOCATIONS = [
    '北京', '上海', '广州', '深圳', '杭州', '南京', '武汉', '成都',
    '西安', '重庆', '天津', '青岛', '大连', '厦门', '苏州', '无锡',
]


class OnlineUserStats:
    """按天重置的在线统计；随机源可注入，便于测试。"""

    def __init__(self, rng=None, clock=time.time):
        self.rng = rng or random.Random()
        self.clock = clock
        self.sessions = {}
        self._day = None
        self._reset_if_new_day()

    def _now(self):
        return datetime.fromtimestamp(self.clock())

    def _reset_if_new_day(self):
        today = self._now().date()
        if self._day == today:
            return
        self._day = today
        self.sessions.clear()
        self.current_online = self.rng.randint(5, 24)
        self.peak_today = 0
        self.peak_time = ''
        self.total_visits_today = self.rng.randint(50, 149)
        self.average_online_today = 0
        self.last_updated = self._now()

    def join(self) -> dict:
        """模拟一个用户进入：更新在线数、峰值和访问量。"""
        self._reset_if_new_day()
        now = self._now()
        session_id = f"session_{secrets.token_hex(5)}_{int(self.clock() * 1000)}"
        session = {
            'sessionId': session_id,
            'startTime': int(self.clock() * 1000),
            'lastActive': int(self.clock() * 1000),
            'userAgent': self.rng.choice(USER_AGENTS),
            'location': self.rng.choice(LOCATIONS),
        }
        self.sessions[session_id] = session
        self.current_online += 1
        if self.current_online > self.peak_today:
            self.peak_today = self.current_online
            self.peak_time = now.strftime('%H:%M:%S')
        self.total_visits_today += 1
        self.last_updated = now
        return session

    def leave(self):
        """随机移除一个模拟会话；没有会话时返回 None。"""
        self._reset_if_new_day()
        if not self.sessions:
            return None
        session_id = self.rng.choice(sorted(self.sessions))
        session = self.sessions.pop(session_id)
        self.current_online = max(0, self.current_online - 1)
        self.last_updated = self._now()
        return session

    def update_average(self):
        self.average_online_today = round((self.peak_today + self.current_online) / 2)
        self.last_updated = self._now()

    def refresh(self):
        """手动刷新：30% 概率有人进入，30% 概率有人离开，然后更新平均值。"""
        roll = self.rng.random()
        if roll < 0.3:
            self.join()
        elif roll < 0.6 and self.sessions:
            self.leave()
        self.update_average()
        return self.snapshot()

    def active_sessions(self) -> list:
        now_ms = int(self.clock() * 1000)
        return [
            {
                **s,
                'duration': round((now_ms - s['startTime']) / 60000),
                'activeTime': round((now_ms - s['lastActive']) / 60000),
            }
            for s in self.sessions.values()
        ]

    def snapshot(self) -> dict:
        self._reset_if_new_day()
        return {
            'currentOnline': self.current_online,
            'peakToday': self.peak_today,
            'peakTime': self.peak_time,
            'totalVisitsToday': self.total_visits_today,
            'averageOnlineToday': self.average_online_today,
            'lastUpdated': self.last_updated.strftime('%Y-%m-%d %H:%M:%S'),
        }
