import argparse
import logging
from random import Random

from studentpipe.config import get_settings
from studentpipe.database import build_session_factory
from studentpipe.pipeline import PipelineService
from studentpipe.schemas import FileOperationResult, LoadResult, ProgressStatus
from studentpipe.tasks import OperationHandle


logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate, convert and load student records")
    parser.add_argument("--poll-seconds", type=float, default=0.5, help="progress polling interval")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate_parser = subparsers.add_parser("generate", help="generate a spreadsheet of synthetic students")
    generate_parser.add_argument("--records", type=int, required=True, help="number of records to generate")
    generate_parser.add_argument("--file-name", required=False, help="output file name (.xlsx)")
    generate_parser.add_argument("--seed", type=int, required=False, help="random seed for reproducible data")

    convert_parser = subparsers.add_parser("convert", help="convert a spreadsheet to csv (+10 score)")
    convert_parser.add_argument("--source", required=True, help="path to the .xlsx file")

    load_parser = subparsers.add_parser("load", help="load a csv file into the student table")
    load_parser.add_argument("--source", required=True, help="path to the .csv file")

    args = parser.parse_args()
    if args.command == "generate" and args.records < 0:
        parser.error("--records must not be negative")
    return args


def wait_for(service: PipelineService, handle: OperationHandle, poll_seconds: float) -> None:
    last_processed = -1
    while not handle.join(poll_seconds):
        snapshot = service.get_progress(handle.operation_id)
        if snapshot is not None and snapshot.processed_units != last_processed:
            last_processed = snapshot.processed_units
            logger.info(
                snapshot.message,
                extra={"operation_id": handle.operation_id, "processed": snapshot.processed_units},
            )


def format_result(result: FileOperationResult | LoadResult) -> str:
    if isinstance(result, LoadResult):
        return "file={file} read={read} inserted={inserted} skipped={skipped} failed={failed}".format(
            file=result.file_name,
            read=result.records_read,
            inserted=result.records_inserted,
            skipped=result.records_skipped,
            failed=result.records_failed,
        )
    return "operation={operation} file={file} records={records} path={path}".format(
        operation=result.operation,
        file=result.file_name,
        records=result.records_processed,
        path=result.path,
    )


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    service = PipelineService(settings, build_session_factory(settings.database_url, echo=settings.database_echo))
    service.start_sweeper()
    try:
        if args.command == "generate":
            rng = Random(args.seed) if args.seed is not None else None
            handle = service.start_generate(args.records, args.file_name, rng=rng)
        elif args.command == "convert":
            handle = service.start_convert(args.source)
        else:
            handle = service.start_load(args.source)

        wait_for(service, handle, args.poll_seconds)
        snapshot = service.get_progress(handle.operation_id)
    finally:
        service.close()

    status = snapshot.status if snapshot is not None else ProgressStatus.FAILED
    message = snapshot.message if snapshot is not None else "progress not found"
    error = handle.exception()
    summary = f"operation_id={handle.operation_id} status={status.value}"
    if error is None:
        summary += " " + format_result(handle.result())
    print(f"{summary} message={message!r}")

    if error is not None or status == ProgressStatus.FAILED:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
