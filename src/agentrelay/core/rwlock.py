"""読み書きロック

複数の読み取りを同時に許可し、書き込みは排他にする。
ポーリングはワーカースレッドで、アクセサはイベントループで動くため threading ベース。
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class ReadWriteLock:
    """書き込み優先の読み書きロック

    書き込み待ちがある間は新しい読み取りを待たせる（書き込みの飢餓を防ぐ）。
    再入不可。
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        """読み取りロックを保持するコンテキスト"""
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        """書き込みロックを保持するコンテキスト"""
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
