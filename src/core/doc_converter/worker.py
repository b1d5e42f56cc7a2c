"""Out-of-process conversion worker.

Invoked as ``python -m core.doc_converter.worker '<payload>'`` by
:class:`~core.doc_converter.runner.SubprocessRunner`. Progress is reported on
stdout as ``progress <units>`` lines; a failure is reported as
``error <code> <message>`` followed by a non-zero exit.
"""

from __future__ import annotations

import sys

from .dispatch import DispatchError, conversion_from_payload, operation_for
from .errors import ErrorCode, error_code_for


class _StdoutProgress:
    def checkpoint(self, units_done: int) -> None:
        print(f"progress {units_done}", flush=True)


def _report(code: int, message: str) -> None:
    print(f"error {code} {' '.join(message.split())}", flush=True)


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        _report(int(ErrorCode.CONVERSION_FAILED), "usage: python -m core.doc_converter.worker PAYLOAD")
        return 2
    try:
        conversion = conversion_from_payload(args[0])
        operation_for(conversion)(conversion, _StdoutProgress())
    except DispatchError as exc:
        _report(int(ErrorCode.CONVERSION_FAILED), str(exc))
        return 2
    except Exception as exc:
        _report(int(error_code_for(exc)), str(exc) or type(exc).__name__)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
