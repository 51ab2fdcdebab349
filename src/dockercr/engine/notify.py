"""Action-script relay: forwards engine phase notifications to docker-cr.

CRIU runs its --action-script at every phase boundary with the phase name
in CRTOOLS_SCRIPT_ACTION (and, for restore phases, the root task pid in
CRTOOLS_INIT_PID). CriuEngine points that script at this module, which
relays the action over the unix socket named by DOCKERCR_NOTIFY_SOCKET and
exits non-zero if the waiting adapter reports a callback failure. A
non-zero exit makes CRIU abort the dump or restore.

Wire format (one exchange per connection):
    relay -> adapter:  "<action> <pid or ->\\n"
    adapter -> relay:  "ok\\n" or "error <message>\\n"
"""

import os
import socket
import sys

NOTIFY_SOCKET_ENV = "DOCKERCR_NOTIFY_SOCKET"
ACTION_ENV = "CRTOOLS_SCRIPT_ACTION"
INIT_PID_ENV = "CRTOOLS_INIT_PID"

REPLY_OK = "ok"
REPLY_ERROR = "error"
NO_PID = "-"


def encode_request(action: str, pid: int | None) -> bytes:
    return f"{action} {NO_PID if pid is None else pid}\n".encode()


def decode_request(line: bytes) -> tuple[str, int | None]:
    """Parse a relay request into (action, pid).

    Raises:
        ValueError: If the line is not "<action> <pid>"
    """
    action, _, pid_text = line.decode().strip().partition(" ")
    if not action:
        raise ValueError(f"empty notification: {line!r}")
    if pid_text in ("", NO_PID):
        return action, None
    return action, int(pid_text)


def relay(action: str, pid: int | None, socket_path: str) -> str:
    """Send one notification and return the adapter's reply line."""
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.connect(socket_path)
        sock.sendall(encode_request(action, pid))
        with sock.makefile("rb") as reader:
            return reader.readline().decode().strip()


def main() -> int:
    action = os.environ.get(ACTION_ENV)
    socket_path = os.environ.get(NOTIFY_SOCKET_ENV)
    if not action or not socket_path:
        # Not started by a docker-cr engine call
        return 0

    pid_text = os.environ.get(INIT_PID_ENV)
    pid = int(pid_text) if pid_text and pid_text.isdigit() else None
    try:
        reply = relay(action, pid, socket_path)
    except OSError as e:
        print(f"docker-cr: cannot deliver {action} notification: {e}", file=sys.stderr)
        return 1

    if reply == REPLY_OK:
        return 0
    print(f"docker-cr: {action} callback failed: {reply}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
