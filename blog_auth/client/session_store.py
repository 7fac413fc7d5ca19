"""
客户端会话存储

对应浏览器端的 localStorage 登录态：令牌、过期时间与用户资料。FileSessionStorage
可被多个进程共享（相当于多个浏览器标签页），通过 sync() 感知其他进程的修改。
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from blog_auth.core.enums import SessionChangeReason
from blog_auth.core.logger import logger

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
TOKEN_EXPIRY_KEY = "token_expiry_ms"
USER_PROFILE_KEY = "user_profile"
PENDING_STATE_KEY = "oauth_pending_state"

SESSION_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_EXPIRY_KEY, USER_PROFILE_KEY)

SessionListener = Callable[[SessionChangeReason], None]


class SessionStorage(ABC):
    """键值存储（值均为字符串），整体读写"""

    @abstractmethod
    def load(self) -> Dict[str, str]:
        ...

    @abstractmethod
    def save(self, data: Mapping[str, str]) -> None:
        ...

    @abstractmethod
    def revision(self) -> str:
        """内容版本标识，内容变化时随之变化"""


class MemorySessionStorage(SessionStorage):
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._revision = 0

    def load(self) -> Dict[str, str]:
        return dict(self._data)

    def save(self, data: Mapping[str, str]) -> None:
        self._data = dict(data)
        self._revision += 1

    def revision(self) -> str:
        return str(self._revision)


class FileSessionStorage(SessionStorage):
    """
    JSON 文件存储

    写入时先写临时文件再原子替换，权限 0600；文件不存在或损坏时视为空会话。
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        if path is None:
            path = Path.home() / ".blog-auth" / "session.json"
        self.path = Path(path)

    def _read_bytes(self) -> bytes:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return b""

    def load(self) -> Dict[str, str]:
        raw = self._read_bytes()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("会话文件损坏，按空会话处理: {}", self.path)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def save(self, data: Mapping[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(dict(data), fh, ensure_ascii=False, sort_keys=True)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def revision(self) -> str:
        return hashlib.sha256(self._read_bytes()).hexdigest()


class SessionBroadcaster:
    """进程内会话变更通知"""

    def __init__(self) -> None:
        self._listeners: list[SessionListener] = []

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, reason: SessionChangeReason) -> None:
        for listener in list(self._listeners):
            try:
                listener(reason)
            except Exception:
                # 单个监听器出错不影响其他监听器
                logger.exception("会话变更回调执行失败: reason={}", reason.value)


class ClientSessionStore:
    """客户端登录态"""

    def __init__(
        self,
        storage: Optional[SessionStorage] = None,
        broadcaster: Optional[SessionBroadcaster] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage = storage or MemorySessionStorage()
        self.broadcaster = broadcaster or SessionBroadcaster()
        self._clock = clock
        self._known_revision = self.storage.revision()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _write(self, data: Mapping[str, str], reason: Optional[SessionChangeReason]) -> None:
        self.storage.save(data)
        self._known_revision = self.storage.revision()
        if reason is not None:
            self.broadcaster.publish(reason)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        return self.broadcaster.subscribe(listener)

    def persist(
        self,
        tokens: Mapping[str, Any],
        expires_in_seconds: int,
        user_profile: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """登录成功后一次性写入令牌、过期时间与用户资料"""
        access_token = tokens.get("access_token")
        refresh_token = tokens.get("refresh_token")
        if not access_token or not refresh_token:
            raise ValueError("access_token 与 refresh_token 不能为空")
        if expires_in_seconds <= 0:
            raise ValueError("expires_in_seconds 必须大于 0")

        data = self.storage.load()
        data[ACCESS_TOKEN_KEY] = str(access_token)
        data[REFRESH_TOKEN_KEY] = str(refresh_token)
        data[TOKEN_EXPIRY_KEY] = str(self._now_ms() + int(expires_in_seconds) * 1000)
        if user_profile is not None:
            data[USER_PROFILE_KEY] = json.dumps(dict(user_profile), ensure_ascii=False, default=str)
        else:
            data.pop(USER_PROFILE_KEY, None)
        self._write(data, SessionChangeReason.PERSISTED)

    def update_access_token(self, access_token: str, expires_in_seconds: int) -> None:
        if not access_token or expires_in_seconds <= 0:
            raise ValueError("无效的 access token 刷新结果")
        data = self.storage.load()
        data[ACCESS_TOKEN_KEY] = access_token
        data[TOKEN_EXPIRY_KEY] = str(self._now_ms() + int(expires_in_seconds) * 1000)
        self._write(data, SessionChangeReason.REFRESHED)

    def get_access_token(self) -> Optional[str]:
        return self.storage.load().get(ACCESS_TOKEN_KEY) or None

    def get_refresh_token(self) -> Optional[str]:
        return self.storage.load().get(REFRESH_TOKEN_KEY) or None

    def get_expiry_ms(self) -> Optional[int]:
        raw = self.storage.load().get(TOKEN_EXPIRY_KEY)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def get_user_profile(self) -> Optional[Dict[str, Any]]:
        raw = self.storage.load().get(USER_PROFILE_KEY)
        if not raw:
            return None
        try:
            profile = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return profile if isinstance(profile, dict) else None

    def is_valid(self) -> bool:
        """
        有 access token 且未过期（到期时刻视为已过期）。

        发现已过期时顺带清除会话并广播 cleared，其他观察者随之退出登录态。
        """
        if not self.get_access_token():
            return False
        expiry_ms = self.get_expiry_ms()
        if expiry_ms is None:
            return False
        if expiry_ms <= self._now_ms():
            logger.info("客户端会话已过期，清除登录态")
            self.clear()
            return False
        return True

    def clear(self) -> bool:
        """清除登录态（幂等），仅在确实删除了内容时广播"""
        data = self.storage.load()
        removed = False
        for key in SESSION_KEYS:
            if key in data:
                del data[key]
                removed = True
        if not removed:
            return False
        self._write(data, SessionChangeReason.CLEARED)
        logger.debug("客户端会话已清除")
        return True

    def save_pending_state(self, state: str) -> None:
        data = self.storage.load()
        data[PENDING_STATE_KEY] = state
        self._write(data, None)

    def pop_pending_state(self) -> Optional[str]:
        data = self.storage.load()
        state = data.pop(PENDING_STATE_KEY, None)
        if state is not None:
            self._write(data, None)
        return state or None

    def sync(self) -> bool:
        """检测其他进程对共享存储的修改，有变化时广播 external"""
        current = self.storage.revision()
        if current == self._known_revision:
            return False
        self._known_revision = current
        self.broadcaster.publish(SessionChangeReason.EXTERNAL)
        return True

    async def watch(self, interval: float = 1.0, stop_event: Optional[asyncio.Event] = None) -> None:
        """轮询 sync()，直到 stop_event 被设置或任务被取消"""
        while stop_event is None or not stop_event.is_set():
            self.sync()
            if stop_event is None:
                await asyncio.sleep(interval)
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
