"""播放列表组装：按课程筛选视频 -> 随机打乱 -> 每 N 条插入一条介绍视频。"""

import random
from dataclasses import dataclass

from config import Config

INTRODUCE_TAG = Config.INTRODUCE_TAG


class SettingsError(ValueError):
    """播放设置不合法（例如插入频率小于 1）。"""


@dataclass
class AppSettings:
    introduce_frequency: int = Config.DEFAULT_INTRODUCE_FREQUENCY
    enable_introduce: bool = Config.DEFAULT_ENABLE_INTRODUCE
    default_course: str = Config.DEFAULT_COURSE

    # 前端沿用的 camelCase 字段名
    WIRE_NAMES = {
        'introduceFrequency': 'introduce_frequency',
        'enableIntroduce': 'enable_introduce',
        'defaultCourse': 'default_course',
    }

    def validate(self) -> 'AppSettings':
        freq = self.introduce_frequency
        if isinstance(freq, bool) or not isinstance(freq, int) or freq < 1:
            raise SettingsError('introduceFrequency 必须是不小于 1 的整数')
        if not isinstance(self.enable_introduce, bool):
            raise SettingsError('enableIntroduce 必须是布尔值')
        if not isinstance(self.default_course, str):
            raise SettingsError('defaultCourse 必须是字符串')
        return self

    def merged(self, payload: dict) -> 'AppSettings':
        """在当前设置上合并部分字段，返回新的已校验设置；未知字段忽略。"""
        if not isinstance(payload, dict):
            raise SettingsError('设置必须是 JSON 对象')
        values = self.to_fields()
        for wire, attr in self.WIRE_NAMES.items():
            if wire in payload:
                values[attr] = payload[wire]
        return AppSettings(**values).validate()

    def to_fields(self) -> dict:
        return {attr: getattr(self, attr) for attr in self.WIRE_NAMES.values()}

    def to_dict(self) -> dict:
        return {wire: getattr(self, attr) for wire, attr in self.WIRE_NAMES.items()}


@dataclass
class PlaylistItem:
    video: dict
    course: dict

    def to_dict(self) -> dict:
        return {'video': self.video, 'course': self.course}


def find_course(courses, tag):
    return next((c for c in courses if c.get('tag') == tag), None)


def shuffle_videos(videos, rng=None):
    """返回打乱后的新列表（Fisher–Yates），不修改入参。"""
    rng = rng or random
    shuffled = list(videos)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def build_playlist(courses, videos, course_tag, settings: AppSettings, rng=None):
    """
    生成某课程的连续播放序列：
    1) 找不到目标课程时返回空列表；
    2) 课程视频随机打乱后依次加入；
    3) 开启介绍视频且第 k 条（从 1 计）满足 k % N == 0 时，随机插入一条介绍视频。
    每次调用都会重新打乱，调用方切换课程时直接重新生成即可。
    """
    settings.validate()
    rng = rng or random

    target = find_course(courses, course_tag)
    if target is None:
        return []

    course_videos = [v for v in videos if v.get('courseName') == course_tag]
    introduce_videos = [v for v in videos if v.get('courseName') == INTRODUCE_TAG]
    introduce_course = find_course(courses, INTRODUCE_TAG)
    interleave = settings.enable_introduce and bool(introduce_videos) and introduce_course is not None

    playlist = []
    for k, video in enumerate(shuffle_videos(course_videos, rng), start=1):
        playlist.append(PlaylistItem(video=video, course=target))
        if interleave and k % settings.introduce_frequency == 0:
            playlist.append(PlaylistItem(video=rng.choice(introduce_videos), course=introduce_course))
    return playlist
