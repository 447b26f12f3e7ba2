from __future__ import annotations
import os
import signal
import subprocess
import threading
from dataclasses import dataclass
from typing import Sequence, Optional

from ..cancellation import CancellationToken

KILL_GRACE_SECONDS = 2.0

@dataclass
class CmdResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    cancelled: bool = False

def _kill_tree(p: subprocess.Popen) -> None:
    if p.poll() is not None:
        return
    if os.name == "nt":
        p.kill()
        return
    # the shell runs in its own session; take its children down with it
    try:
        os.killpg(p.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    # may run inside a signal handler, so never block here
    t = threading.Timer(KILL_GRACE_SECONDS, _force_kill, args=(p,))
    t.daemon = True
    t.start()

def _force_kill(p: subprocess.Popen) -> None:
    if p.poll() is not None:
        return
    try:
        os.killpg(p.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass

def run_cmd(
    cmd: Sequence[str],
    cwd: str,
    timeout: Optional[int] = 120,
    token: Optional[CancellationToken] = None,
) -> CmdResult:
    """Run cmd to completion, a timeout, or until token is cancelled.

    On cancel or timeout the whole process group is terminated and whatever
    output was produced so far is returned.
    """
    p = subprocess.Popen(
        list(cmd),
        cwd=cwd,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        shell=False,
        start_new_session=(os.name != "nt"),
    )
    unregister = token.add_callback(lambda: _kill_tree(p)) if token is not None else (lambda: None)
    timed_out = False
    try:
        try:
            out, err = p.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            _kill_tree(p)
            out, err = p.communicate()
    finally:
        unregister()
    return CmdResult(
        returncode=p.returncode if p.returncode is not None else -1,
        stdout=out or "",
        stderr=err or "",
        timed_out=timed_out,
        cancelled=bool(token is not None and token.is_cancelled),
    )
