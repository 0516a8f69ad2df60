"""课程/视频内容存储：每类资源对应磁盘上的一个 JSON 数组文件。

每次写操作都是「整文件读出 -> 修改 -> 整文件写回」，没有加锁，也没有事务；
并发写同一个文件时以最后一次写入为准。后台只有一个管理员在用，这个限制可以接受。
"""

import json
import logging
import os
import time

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """文件读写或 JSON 解析失败。"""


class RecordNotFound(LookupError):
    """按 id 找不到记录。"""

    def __init__(self, label, record_id):
        super().__init__(f"{label} {record_id} not found")
        self.label = label
        self.record_id = record_id


def now_ms() -> int:
    return int(time.time() * 1000)


class JsonCollection:
    """一份 JSON 数组文件上的增删改查。"""

    def __init__(self, path: str, label: str = 'record'):
        self.path = path
        self.label = label

    def _read(self) -> list:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read %s: %s", self.path, exc)
            raise StoreError(f"failed to read {self.path}") from exc
        if not isinstance(data, list):
            raise StoreError(f"{self.path} does not contain a JSON array")
        return data

    def _write(self, records: list) -> None:
        try:
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(records, f, ensure_ascii=False, indent=2)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to write %s: %s", self.path, exc)
            raise StoreError(f"failed to write {self.path}") from exc

    @staticmethod
    def _index_of(records: list, record_id: int) -> int:
        for idx, record in enumerate(records):
            # bool 是 int 的子类，True 不能匹配 id=1
            rid = record.get('id') if isinstance(record, dict) else None
            if isinstance(rid, int) and not isinstance(rid, bool) and rid == record_id:
                return idx
        return -1

    def list_all(self) -> list:
        return self._read()

    def create(self, fields: dict) -> dict:
        """新增记录：id 取当前毫秒时间戳；同一毫秒内重复时顺延，保证唯一。"""
        records = self._read()
        taken = {r.get('id') for r in records if isinstance(r, dict)}
        new_id = now_ms()
        while new_id in taken:
            new_id += 1
        record = {**fields, 'id': new_id}
        records.append(record)
        self._write(records)
        return record

    def update(self, record_id: int, fields: dict) -> dict:
        """部分更新：合并调用方字段，id 始终保持原值。"""
        records = self._read()
        idx = self._index_of(records, record_id)
        if idx == -1:
            raise RecordNotFound(self.label, record_id)
        original_id = records[idx]['id']
        records[idx] = {**records[idx], **fields, 'id': original_id}
        self._write(records)
        return records[idx]

    def delete(self, record_id: int) -> dict:
        records = self._read()
        idx = self._index_of(records, record_id)
        if idx == -1:
            raise RecordNotFound(self.label, record_id)
        removed = records.pop(idx)
        self._write(records)
        return removed
