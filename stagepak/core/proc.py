# stagepak/core/proc.py
from __future__ import annotations
import os, subprocess, threading

# Windows flags to hide console windows
CREATE_NO_WINDOW = 0x08000000
STARTF_USESHOWWINDOW = 0x00000001
SW_HIDE = 0


def _startupinfo_windows():
    if os.name != "nt":
        return None
    si = subprocess.STARTUPINFO()
    si.dwFlags |= STARTF_USESHOWWINDOW
    si.wShowWindow = SW_HIDE
    return si


def _reader(pipe, sink_list, on_output):
    """Line-buffered stream reader that forwards lines to on_output."""
    try:
        for line in iter(pipe.readline, ''):
            sink_list.append(line)
            if on_output:
                on_output(line.rstrip("\r\n"))
    finally:
        pipe.close()


def run_quiet(cmd: list[str],
              cwd: str | None = None,
              env: dict | None = None,
              check: bool = True,
              on_output=None) -> subprocess.CompletedProcess:
    """
    Spawn a process with NO console window (on Windows), capture UTF-8 output,
    stream it line by line via on_output and block until it exits. No timeout.
    """
    p = subprocess.Popen(
        cmd, cwd=cwd, env=env, shell=False,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE, stderr=subprocess.PIPE,
        text=True, encoding="utf-8", errors="replace", bufsize=1,
        startupinfo=_startupinfo_windows(),
        creationflags=CREATE_NO_WINDOW if os.name == "nt" else 0,
    )
    out_chunks: list[str] = []
    err_chunks: list[str] = []
    t_out = threading.Thread(target=_reader, args=(p.stdout, out_chunks, on_output), daemon=True)
    t_err = threading.Thread(target=_reader, args=(p.stderr, err_chunks, on_output), daemon=True)
    t_out.start()
    t_err.start()
    p.wait()
    t_out.join()
    t_err.join()

    out = "".join(out_chunks)
    err = "".join(err_chunks)
    if check and p.returncode != 0:
        raise subprocess.CalledProcessError(p.returncode, cmd, out, err)
    return subprocess.CompletedProcess(cmd, p.returncode, out, err)
