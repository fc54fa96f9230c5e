#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from relay.core.config import QUEUE_BATCH_SIZE, QUEUE_RETENTION_HOURS  # noqa: E402
from relay.core.database import SessionLocal  # noqa: E402
from relay.core.logging_setup import configure_logging  # noqa: E402
from relay.queue import store  # noqa: E402
from relay.queue.processor import QueueProcessor  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Processa um lote da fila de saída (uso via cron).")
    parser.add_argument("--limit", type=int, default=QUEUE_BATCH_SIZE, help="Máximo de entradas por execução")
    parser.add_argument("--cleanup", action="store_true", help="Remove entradas done/failed antigas")
    parser.add_argument("--cleanup-only", action="store_true", help="Só executa a limpeza, sem enviar")
    parser.add_argument(
        "--retention-hours",
        type=int,
        default=QUEUE_RETENTION_HOURS,
        help="Idade mínima (horas) das entradas removidas pela limpeza",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging()

    db = SessionLocal()
    try:
        if not args.cleanup_only:
            report = QueueProcessor().run_batch(db, limit=args.limit)
            print(
                f"Fila: processadas={report.processed} enviadas={report.sent} "
                f"reagendadas={report.retried} falhas={report.failed}"
            )
        if args.cleanup or args.cleanup_only:
            deleted = store.purge_finished(db, older_than=timedelta(hours=args.retention_hours))
            print(f"Limpeza: {deleted} entradas removidas")
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
