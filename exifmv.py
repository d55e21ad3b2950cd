#!/usr/bin/env python

r"""
exifmv.py - Move images into a year/month/day folder hierarchy based on EXIF tags

SUMMARY:
--------
This script scans a source directory for image and movie files, reads the original capture
date embedded in their metadata, and moves them into subfolders of a destination directory
organized as YYYY/MM/DD. Files that already exist at the destination with the same name and
size are recognised as duplicates and can be left alone, deleted, or sent to the trash.

FEATURES:
---------
- Reads EXIF DateTimeOriginal (then Image DateTime, then DateTimeDigitized) with exifread,
  falling back to hachoir's creation_date for formats exifread cannot read.
- Destination layout is always DESTINATION/YYYY/MM/DD/<name>.<ext>.
- Optional lowercasing of file names and extensions at the destination.
- Day wrap: photos taken before a given time of day are filed under the previous day.
- Duplicate detection by name and size; destination files are never overwritten.
- Duplicates can be removed permanently, sent to the trash, or handed to the 'rip' tool.
- XMP sidecar files follow their image.
- Dry run mode: report every intended action without touching the filesystem.
- Halt on first error, or continue and report all errors at the end.

USAGE EXAMPLES:
---------------
1. Move all images found directly in ~/import into ~/photos:
    exifmv ~/import ~/photos

2. Recurse into subdirectories and lowercase the file names:
    exifmv -r -l ~/import ~/photos

3. Preview what would happen without changing anything:
    exifmv -r -d ~/import ~/photos

4. Treat anything shot before 6 am as belonging to the previous day:
    exifmv -r -w 6 ~/import ~/photos

5. Send duplicates that are already in the archive to the trash:
    exifmv -r --trash-source ~/import ~/photos

6. Delete duplicates through 'rip' so they can still be recovered from its graveyard:
    exifmv -r --remove-source --use-rip ~/import ~/photos

7. File images without any capture date by their modification time:
    exifmv -r --missing-date mtime ~/import ~/photos

8. Only process RAW and JPEG files, stop at the first problem, and remove emptied folders:
    exifmv -r -H --cleanup -j arw,jpg ~/import ~/photos

See --help for all options.
"""

# Standard library imports
import sys
import datetime
import enum
import logging
import shutil
import stat
import subprocess
import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Third-party library imports for metadata extraction and trash support
import exifread
from hachoir.parser import createParser
from hachoir.metadata import extractMetadata
from hachoir.core import config
from send2trash import send2trash

# Suppress hachoir warnings to keep console output clean
config.quiet = True

# exifread logs "File format not recognized" for every non-EXIF file
logging.getLogger("exifread").setLevel(logging.ERROR)

# Script version information
# Version History:
# v0.4.x - Move by EXIF date, duplicate removal via --remove-source / --trash-source
# v0.5.0 - Day wrap, --use-rip, XMP sidecars, --missing-date policy, per-file results
#          and a final run summary with a non-zero exit status on errors
__version__ = "0.5.0"
myversion = f"v. {__version__} 2026-10-18"

# File extensions processed by default (RAW, other still images, movies)
EXTENSIONS = frozenset(
    "." + ext
    for ext in (
        # RAW file extensions
        "3fr", "ari", "arw", "bay", "cap", "cr2", "cr3", "crw", "data", "dcr", "dcs", "dng",
        "drf", "eip", "erf", "fff", "gpr", "iiq", "k25", "kdc", "mdc", "mef", "mos", "mrw",
        "nef", "nrw", "obm", "orf", "pef", "ptx", "pxn", "r3d", "raf", "raw", "rw2", "rwl",
        "rwz", "sr2", "srf", "srw", "x3f",
        # other image files
        "fpx", "gif", "j2k", "jfif", "jif", "jp2", "jpeg", "jpg", "jpx", "pcd", "psd", "tif",
        "tiff",
        # movie file formats
        "264", "3g2", "3gp", "amv", "asf", "avi", "cine", "drc", "f4a", "f4b", "f4p", "f4v",
        "flv", "gifv", "m2ts", "m2v", "m4p", "m4v", "mkv", "mng", "mp4", "mpeg", "mpg", "mts",
        "mxf", "nsv", "ogg", "qt", "roq", "svi", "vob", "wmv", "yuv",
    )
)

# Extensions worth handing to exifread before falling back to hachoir
_EXIFREAD_EXTENSIONS = frozenset(
    {
        ".jpg", ".jpeg", ".jfif", ".jif", ".tif", ".tiff", ".heic", ".heif", ".png", ".webp",
        ".3fr", ".arw", ".cr2", ".dcr", ".dng", ".erf", ".kdc", ".mef", ".mos", ".mrw",
        ".nef", ".nrw", ".orf", ".pef", ".raf", ".rw2", ".sr2", ".srf", ".srw", ".x3f",
    }
)

# EXIF tags tried in order of preference
EXIF_DATE_TAGS = ("EXIF DateTimeOriginal", "Image DateTime", "EXIF DateTimeDigitized")

# Folder used by --missing-date unknown
UNKNOWN_DATE_DIR = "unknown-date"

SIDECAR_SUFFIX = ".xmp"

MISSING_DATE_POLICIES = ("skip", "mtime", "unknown")


class CollisionOutcome(enum.Enum):
    """How a planned destination relates to what is already there."""

    NO_COLLISION = "no collision"
    ALREADY_IN_PLACE = "already in place"
    DUPLICATE_REMOVE_SOURCE = "duplicate, remove source"
    DUPLICATE_SKIP = "duplicate, skip"
    CONFLICT_DIFFERENT_FILE = "conflict"


class FileState(enum.Enum):
    """Terminal state of a single file after one pass."""

    MOVED = "moved"
    SOURCE_REMOVED = "source removed"
    SKIPPED = "skipped"
    REPORTED = "reported"
    FAILED = "failed"


class ErrorKind(enum.Enum):
    METADATA_UNAVAILABLE = "metadata unavailable"
    DIRECTORY_CREATE_FAILURE = "directory create failure"
    MOVE_FAILURE = "move failure"
    DELETE_FAILURE = "delete failure"
    CONFLICT_DIFFERENT_FILE = "conflicting file"
    EXTERNAL_TOOL_FAILURE = "external tool failure"


class ExternalToolError(Exception):
    """Raised when the external deletion utility is missing or fails."""


@dataclass(frozen=True)
class CandidateFile:
    source_path: Path
    size_bytes: int


@dataclass(frozen=True)
class DestinationPlan:
    """Resolved target for one candidate.

    Attributes:
        target_path (Path): Where the file should end up
        bucket (datetime.date or None): Date folder used, None for the unknown-date folder
        exists (bool): Whether target_path existed when the plan was made
    """

    target_path: Path
    bucket: Optional[datetime.date]
    exists: bool = False


@dataclass(frozen=True)
class FileResult:
    """Outcome of processing one file, consumed by the run orchestrator."""

    candidate: CandidateFile
    state: FileState
    target: Optional[Path] = None
    outcome: Optional[CollisionOutcome] = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @property
    def is_error(self) -> bool:
        return self.error_kind is not None

    @property
    def halts_run(self) -> bool:
        """Errors that stop the run under --halt-on-errors.

        Conflicts are counted as errors but never stop a run.
        """
        return self.is_error and self.error_kind is not ErrorKind.CONFLICT_DIFFERENT_FILE


@dataclass
class RunReport:
    """Counters for one run. Only updated through record()."""

    scanned: int = 0
    moved: int = 0
    skipped: int = 0
    duplicates_removed: int = 0
    errors: int = 0
    halted: bool = False
    dry_run: bool = False

    def record(self, result: FileResult, scanned: bool = True):
        """
        Fold one file result into the counters.

        Args:
            result (FileResult): Result of a processed file
            scanned (bool): Whether the file came from the enumerator (sidecars do not)
        """
        if scanned:
            self.scanned += 1

        if result.is_error:
            self.errors += 1
            return

        if result.state is FileState.REPORTED:
            # Dry run: count what would have happened
            if result.outcome is CollisionOutcome.NO_COLLISION:
                self.moved += 1
            elif result.outcome is CollisionOutcome.DUPLICATE_REMOVE_SOURCE:
                self.duplicates_removed += 1
            else:
                self.skipped += 1
        elif result.state is FileState.MOVED:
            self.moved += 1
        elif result.state is FileState.SOURCE_REMOVED:
            self.duplicates_removed += 1
        elif result.state is FileState.SKIPPED:
            self.skipped += 1

    @property
    def exit_code(self) -> int:
        return 1 if self.errors else 0

    def summary(self) -> str:
        prefix = "[DRY RUN] " if self.dry_run else ""
        line = (
            f"{prefix}Scanned: {self.scanned}, moved: {self.moved}, skipped: {self.skipped}, "
            f"duplicates removed: {self.duplicates_removed}, errors: {self.errors}"
        )
        if self.halted:
            line += " (halted on first error)"
        return line


@dataclass(frozen=True)
class RunConfig:
    """Options for a run, built from the command line by build_config()."""

    source_dir: Path
    destination_dir: Path
    recurse: bool = False
    dereference: bool = False
    make_lowercase: bool = False
    day_wrap: datetime.timedelta = datetime.timedelta(0)
    dry_run: bool = False
    halt_on_errors: bool = False
    remove_source: bool = False
    trash_source: bool = False
    use_rip: bool = False
    ext_list: frozenset = EXTENSIONS
    missing_date: str = "skip"
    sidecars: bool = True
    cleanup: bool = False


# ---------------------------------------------------------------------------
# Source removal strategies
# ---------------------------------------------------------------------------


class SourceRemoval:
    """A way of getting rid of a source file that is a verified duplicate."""

    name = "remove"
    error_kind = ErrorKind.DELETE_FAILURE

    def remove(self, path: Path):
        raise NotImplementedError


class DeleteRemoval(SourceRemoval):
    """Permanently delete the source file."""

    name = "delete"

    def remove(self, path: Path):
        path.unlink()


class TrashRemoval(SourceRemoval):
    """Move the source file to the platform's trash."""

    name = "trash"

    def remove(self, path: Path):
        send2trash(str(path))


class RipRemoval(SourceRemoval):
    """
    Hand the source file to the external 'rip' utility.

    rip keeps removed files in its own graveyard, so its safety model
    replaces both permanent deletion and the platform trash.
    """

    name = "rip"
    error_kind = ErrorKind.EXTERNAL_TOOL_FAILURE

    def __init__(self, executable: str = "rip"):
        self.executable = executable

    def remove(self, path: Path):
        rip = shutil.which(self.executable)
        if rip is None:
            raise ExternalToolError(f"'{self.executable}' is not installed or not on PATH")

        result = subprocess.run([rip, str(path)], capture_output=True, text=True)
        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise ExternalToolError(
                f"{self.executable} exited with status {result.returncode}: {detail}"
            )


def make_source_removal(remove_source: bool, trash_source: bool, use_rip: bool):
    """
    Select the removal strategy for duplicate source files.

    Args:
        remove_source (bool): --remove-source was given
        trash_source (bool): --trash-source was given
        use_rip (bool): --use-rip was given

    Returns:
        SourceRemoval or None: None means duplicates are skipped and left in place

    Raises:
        ValueError: If use_rip is set without a removal intent
    """
    if use_rip:
        if not (remove_source or trash_source):
            raise ValueError("--use-rip requires --remove-source or --trash-source")
        return RipRemoval()
    if trash_source:
        return TrashRemoval()
    if remove_source:
        return DeleteRemoval()
    return None


# ---------------------------------------------------------------------------
# Metadata extraction
# ---------------------------------------------------------------------------


def parse_exif_datetime(value) -> Optional[datetime.datetime]:
    """
    Parse an EXIF date string such as '2019:11:22 14:00:00'.

    Returns None for empty, zeroed or malformed values.
    """
    text = str(value).strip().rstrip("\x00").strip()
    if len(text) < 19:
        return None
    try:
        return datetime.datetime.strptime(text[:19], "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None


def get_exif_date(filename: Path, logger):
    """
    Read the capture date from EXIF tags with exifread.

    Args:
        filename (Path): Path to the image
        logger (logging.Logger): Logger for recording issues

    Returns:
        datetime.datetime or None: First parseable value of EXIF_DATE_TAGS
    """
    try:
        with open(filename, "rb") as f:
            tags = exifread.process_file(f, details=False)
    except Exception as e:
        logger.debug(f"EXIF read failed for {filename}: {e}")
        return None

    if not tags:
        logger.debug(f"No EXIF tags found for {filename}")
        return None

    for tag in EXIF_DATE_TAGS:
        if tag in tags:
            created_date = parse_exif_datetime(tags[tag])
            if created_date:
                return created_date

    logger.debug(f"EXIF tags present but no usable date for {filename}")
    return None


def get_created_date(filename: Path, logger):
    """
    Attempt to extract the creation date from the file's metadata with hachoir.

    Args:
        filename (Path): Path to the file to extract metadata from
        logger (logging.Logger): Logger for recording issues

    Returns:
        datetime.datetime or None: Creation date if found, otherwise None
    """
    created_date = None

    # Try to create a parser for the file
    try:
        parser = createParser(str(filename))
    except Exception as e:
        logger.debug(f"Failed to create parser for {filename}: {e}")
        return created_date

    # If parser creation failed, return None
    if not parser:
        logger.debug(f"Unable to parse file for created date: {filename}")
        return created_date

    # Extract metadata using the parser
    try:
        with parser:
            try:
                metadata = extractMetadata(parser)
            except Exception as err:
                logger.debug(f"Metadata extraction error for {filename}: {err}")
                metadata = None

        if not metadata:
            logger.debug(f"Unable to extract metadata for {filename}")
        else:
            # Take the first creation date hachoir reports
            cd = metadata.getValues("creation_date")
            if len(cd) > 0:
                created_date = cd[0]
    except Exception as e:
        logger.debug(f"Error during metadata extraction for {filename}: {e}")

    # hachoir may hand back a bare date or an aware datetime
    if isinstance(created_date, datetime.datetime):
        created_date = created_date.replace(tzinfo=None)
    elif isinstance(created_date, datetime.date):
        created_date = datetime.datetime.combine(created_date, datetime.time())
    else:
        created_date = None

    return created_date


def get_capture_date(filename: Path, logger):
    """
    Best known original capture time of a file, or None.

    EXIF-capable formats are read with exifread first; everything else, and
    anything exifread finds no date in, goes through hachoir. Never raises.
    """
    if filename.suffix.lower() in _EXIFREAD_EXTENSIONS:
        created_date = get_exif_date(filename, logger)
        if created_date:
            return created_date
    return get_created_date(filename, logger)


# ---------------------------------------------------------------------------
# Timestamp normalization
# ---------------------------------------------------------------------------


def parse_day_wrap(value: str) -> datetime.timedelta:
    """
    Parse a day wrap given as 'H' or 'H:M'.

    Args:
        value (str): Hour, optionally followed by ':' and minutes

    Returns:
        datetime.timedelta: Offset in [0:00, 24:00)

    Raises:
        ValueError: If the value is malformed or out of range
    """
    parts = value.strip().split(":")
    if len(parts) > 2:
        raise ValueError(f"Invalid day wrap '{value}': expected H[:M]")
    try:
        hours = int(parts[0])
        minutes = int(parts[1]) if len(parts) == 2 and parts[1] else 0
    except ValueError:
        raise ValueError(f"Invalid day wrap '{value}': expected H[:M]") from None

    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid day wrap '{value}': must be between 0:00 and 23:59")

    return datetime.timedelta(hours=hours, minutes=minutes)


def date_bucket(timestamp: datetime.datetime, day_wrap=datetime.timedelta(0)) -> datetime.date:
    """Calendar day a timestamp is filed under once the day wrap is applied."""
    return (timestamp - day_wrap).date()


# ---------------------------------------------------------------------------
# Path planning and collision resolution
# ---------------------------------------------------------------------------


def destination_path(destination_dir: Path, bucket, filename: str, make_lowercase: bool) -> Path:
    """
    Compute DESTINATION/YYYY/MM/DD/<name>.<ext> for a file.

    Args:
        destination_dir (Path): Destination root
        bucket (datetime.date or None): Date folder, None for the unknown-date folder
        filename (str): Source file name
        make_lowercase (bool): Lowercase name and extension

    Returns:
        Path: Target path; depends on nothing but the arguments
    """
    name = filename.lower() if make_lowercase else filename
    if bucket is None:
        return destination_dir / UNKNOWN_DATE_DIR / name
    return (
        destination_dir
        / f"{bucket.year:04d}"
        / f"{bucket.month:02d}"
        / f"{bucket.day:02d}"
        / name
    )


def plan_destination(candidate: CandidateFile, destination_dir: Path, bucket,
                     make_lowercase: bool, dryrun: bool, logger):
    """
    Plan the target of a candidate and create its date folder.

    Args:
        candidate (CandidateFile): File being processed
        destination_dir (Path): Destination root
        bucket (datetime.date or None): Date folder for the file
        make_lowercase (bool): Lowercase the destination name
        dryrun (bool): Do not create anything
        logger (logging.Logger): Logger for recording operations

    Returns:
        tuple: (DestinationPlan, error message or None)
    """
    target = destination_path(destination_dir, bucket, candidate.source_path.name, make_lowercase)
    target_dir = target.parent

    if dryrun:
        # Nothing gets created, but a file in the way fails the same as a real run
        blocker = _blocking_component(target_dir)
        if blocker is not None:
            plan = DestinationPlan(target, bucket, False)
            return plan, f"Failed to create destination subdir {target_dir}: {blocker} is not a directory"
    elif not target_dir.is_dir():
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"created new destination subdir: {target_dir}")
        except OSError as e:
            plan = DestinationPlan(target, bucket, False)
            return plan, f"Failed to create destination subdir {target_dir}: {e}"

    return DestinationPlan(target, bucket, target.exists()), None


def _blocking_component(folder: Path):
    """Nearest existing ancestor of folder (or folder itself) that is not a directory."""
    for part in (folder, *folder.parents):
        if part.is_dir():
            return None
        if part.exists():
            return part
    return None


def _is_same_file(first: Path, second: Path) -> bool:
    try:
        return os.path.samefile(first, second)
    except OSError:
        return False


def resolve_collision(candidate: CandidateFile, plan: DestinationPlan, remove_duplicates: bool):
    """
    Classify what is at the planned target, re-reading it from disk.

    Args:
        candidate (CandidateFile): File being processed
        plan (DestinationPlan): Its planned destination
        remove_duplicates (bool): A source removal strategy is configured

    Returns:
        CollisionOutcome: Duplicates need an exact size match (the name
        matches by construction); anything else occupying the path is a
        conflict.
    """
    try:
        target_stat = plan.target_path.stat()
    except FileNotFoundError:
        return CollisionOutcome.NO_COLLISION
    except OSError:
        return CollisionOutcome.CONFLICT_DIFFERENT_FILE

    if _is_same_file(candidate.source_path, plan.target_path):
        return CollisionOutcome.ALREADY_IN_PLACE

    if stat.S_ISREG(target_stat.st_mode) and target_stat.st_size == candidate.size_bytes:
        if remove_duplicates:
            return CollisionOutcome.DUPLICATE_REMOVE_SOURCE
        return CollisionOutcome.DUPLICATE_SKIP

    return CollisionOutcome.CONFLICT_DIFFERENT_FILE


# ---------------------------------------------------------------------------
# Relocation
# ---------------------------------------------------------------------------


def execute_plan(candidate: CandidateFile, plan: DestinationPlan, outcome: CollisionOutcome,
                 dryrun: bool, remover, logger) -> FileResult:
    """
    Carry out the action decided for one file.

    At most one filesystem mutation happens here: a move, a removal of the
    source, or nothing. The destination file is never written over.

    Args:
        candidate (CandidateFile): File being processed
        plan (DestinationPlan): Its planned destination
        outcome (CollisionOutcome): Result of resolve_collision()
        dryrun (bool): Only report what would be done
        remover (SourceRemoval or None): Strategy for duplicate sources
        logger (logging.Logger): Logger for recording operations

    Returns:
        FileResult: Terminal state of the file
    """
    source = candidate.source_path
    target = plan.target_path

    def result(state, error_kind=None, message=""):
        return FileResult(candidate, state, target, outcome, error_kind, message)

    if outcome is CollisionOutcome.CONFLICT_DIFFERENT_FILE:
        message = f"{target} exists and is different; not moving {source}"
        logger.error(message)
        state = FileState.REPORTED if dryrun else FileState.SKIPPED
        return result(state, ErrorKind.CONFLICT_DIFFERENT_FILE, message)

    if outcome is CollisionOutcome.ALREADY_IN_PLACE:
        logger.info(f"{source} is already in place, skipping")
        return result(FileState.REPORTED if dryrun else FileState.SKIPPED)

    if outcome is CollisionOutcome.DUPLICATE_SKIP:
        logger.info(f"{source} is a duplicate of {target}, skipping")
        return result(FileState.REPORTED if dryrun else FileState.SKIPPED)

    if outcome is CollisionOutcome.DUPLICATE_REMOVE_SOURCE:
        if dryrun:
            logger.info(f"[DRY RUN] {source} is a duplicate of {target}, would {remover.name} source")
            return result(FileState.REPORTED)

        # Check again right before removing anything
        if resolve_collision(candidate, plan, True) is not CollisionOutcome.DUPLICATE_REMOVE_SOURCE:
            message = f"{target} changed before {source} could be removed; source kept"
            logger.error(message)
            return result(FileState.FAILED, ErrorKind.DELETE_FAILURE, message)

        try:
            remover.remove(source)
        except (OSError, ExternalToolError) as e:
            message = f"Failed to {remover.name} {source}: {e}"
            logger.error(message)
            return result(FileState.FAILED, remover.error_kind, message)

        logger.info(f"{source} is a duplicate of {target}, source removed ({remover.name})")
        return result(FileState.SOURCE_REMOVED)

    # NO_COLLISION
    if dryrun:
        logger.info(f"[DRY RUN] {source} -> {target}")
        return result(FileState.REPORTED)

    if target.exists():
        message = f"Unable to move {source} to {target}: target was created concurrently"
        logger.error(message)
        return result(FileState.FAILED, ErrorKind.MOVE_FAILURE, message)

    try:
        shutil.move(str(source), str(target))
    except (OSError, shutil.Error) as e:
        message = f"Unable to move {source} to {target}: {e}"
        logger.error(message)
        return result(FileState.FAILED, ErrorKind.MOVE_FAILURE, message)

    logger.info(f"{source} -> {target}")
    return result(FileState.MOVED)


# ---------------------------------------------------------------------------
# Enumeration and orchestration
# ---------------------------------------------------------------------------


def find_candidates(source_dir: Path, recurse: bool, dereference: bool, ext_list, logger):
    """
    Yield the files under source_dir that should be processed.

    Args:
        source_dir (Path): Directory to scan
        recurse (bool): Descend into subdirectories
        dereference (bool): Follow symbolic links to files and directories
        ext_list (frozenset): Lowercase extensions with leading dot
        logger (logging.Logger): Logger for recording operations

    Yields:
        CandidateFile: Regular files in sorted order; a symbolic link is replaced
        by the file it points to when dereferencing
    """
    for folder_name, dirnames, filenames in os.walk(source_dir, followlinks=dereference):
        logger.debug(f"Source Folder: {folder_name}")
        if recurse:
            dirnames.sort()
        else:
            dirnames.clear()

        for filename in sorted(filenames):
            path = Path(folder_name) / filename

            if path.suffix.lower() not in ext_list:
                continue

            if path.is_symlink():
                if not dereference:
                    logger.debug(f"Skipping symbolic link {path}")
                    continue
                # Move the photo itself, not the link pointing at it
                path = path.resolve()
                logger.debug(f"Following symbolic link {Path(folder_name) / filename} to {path}")

            try:
                file_stat = path.stat()
            except OSError as e:
                logger.warning(f"Unable to read {path}: {e}")
                continue

            if not stat.S_ISREG(file_stat.st_mode):
                continue

            yield CandidateFile(path, file_stat.st_size)


def _sidecar_results(candidate: CandidateFile, plan: DestinationPlan, run_config: RunConfig,
                     remover, logger):
    """Let an XMP sidecar follow its image to the image's destination."""
    source = candidate.source_path
    # Camera software writes both IMG_1.CR2.xmp and IMG_1.CR2.XMP
    for suffix in (SIDECAR_SUFFIX, SIDECAR_SUFFIX.upper()):
        sidecar = source.with_name(source.name + suffix)
        try:
            sidecar_stat = sidecar.stat()
        except OSError:
            continue
        if stat.S_ISREG(sidecar_stat.st_mode):
            break
    else:
        return []

    if run_config.make_lowercase:
        suffix = suffix.lower()
    sidecar_name = plan.target_path.name + suffix
    sidecar_candidate = CandidateFile(sidecar, sidecar_stat.st_size)
    target = plan.target_path.with_name(sidecar_name)
    sidecar_plan = DestinationPlan(target, plan.bucket, target.exists())

    outcome = resolve_collision(sidecar_candidate, sidecar_plan, remover is not None)
    return [
        execute_plan(sidecar_candidate, sidecar_plan, outcome, run_config.dry_run, remover, logger)
    ]


def process_candidate(candidate: CandidateFile, run_config: RunConfig, remover, logger):
    """
    Run one candidate through extraction, bucketing, planning, collision
    resolution and execution.

    Returns:
        list: FileResult for the file, followed by one for its sidecar if it had one
    """
    source = candidate.source_path

    capture_date = get_capture_date(source, logger)
    if capture_date is None:
        if run_config.missing_date == "skip":
            message = f"No capture date found for {source}, skipping"
            logger.warning(message)
            return [
                FileResult(candidate, FileState.SKIPPED,
                           error_kind=ErrorKind.METADATA_UNAVAILABLE, message=message)
            ]
        if run_config.missing_date == "mtime":
            try:
                capture_date = datetime.datetime.fromtimestamp(source.stat().st_mtime)
            except (OSError, OverflowError, ValueError) as e:
                message = f"Failed to get file system date for {source}: {e}"
                logger.error(message)
                return [
                    FileResult(candidate, FileState.FAILED,
                               error_kind=ErrorKind.METADATA_UNAVAILABLE, message=message)
                ]
            logger.debug(f"No capture date for {source}, using modification time")
        else:
            logger.debug(f"No capture date for {source}, filing under {UNKNOWN_DATE_DIR}")

    bucket = None
    if capture_date:
        try:
            bucket = date_bucket(capture_date, run_config.day_wrap)
        except OverflowError:
            # Day wrap pushed a year 1 timestamp before datetime.min
            message = f"Capture date {capture_date} of {source} is out of range, skipping"
            logger.error(message)
            return [
                FileResult(candidate, FileState.FAILED,
                           error_kind=ErrorKind.METADATA_UNAVAILABLE, message=message)
            ]

    plan, error = plan_destination(
        candidate, run_config.destination_dir, bucket, run_config.make_lowercase,
        run_config.dry_run, logger,
    )
    if error:
        logger.error(error)
        return [
            FileResult(candidate, FileState.FAILED, plan.target_path,
                       error_kind=ErrorKind.DIRECTORY_CREATE_FAILURE, message=error)
        ]

    outcome = resolve_collision(candidate, plan, remover is not None)
    logger.debug(f"{source}: {outcome.value}")
    result = execute_plan(candidate, plan, outcome, run_config.dry_run, remover, logger)
    results = [result]

    followed = not result.is_error and outcome in (
        CollisionOutcome.NO_COLLISION, CollisionOutcome.DUPLICATE_REMOVE_SOURCE,
    )
    if run_config.sidecars and followed:
        results.extend(_sidecar_results(candidate, plan, run_config, remover, logger))

    return results


def remove_empty_dirs(source_dir: Path, logger):
    """
    Remove directories below source_dir that are empty, deepest first.

    Returns:
        int: Number of directories removed
    """
    removed = 0
    for folder_name, _, _ in os.walk(source_dir, topdown=False):
        folder = Path(folder_name)
        if folder == source_dir or folder.is_symlink():
            continue
        try:
            if any(folder.iterdir()):
                continue
            folder.rmdir()
        except OSError as e:
            logger.warning(f"Failed to remove empty directory {folder}: {e}")
            continue
        removed += 1
        logger.info(f"removed empty directory: {folder}")
    return removed


def run(run_config: RunConfig, logger) -> RunReport:
    """
    Process every candidate under the source directory, one at a time.

    Args:
        run_config (RunConfig): Options for the run
        logger (logging.Logger): Logger for recording operations

    Returns:
        RunReport: Counters for the run
    """
    report = RunReport(dry_run=run_config.dry_run)
    remover = make_source_removal(
        run_config.remove_source, run_config.trash_source, run_config.use_rip
    )

    candidates = find_candidates(
        run_config.source_dir, run_config.recurse, run_config.dereference,
        run_config.ext_list, logger,
    )
    for candidate in candidates:
        results = process_candidate(candidate, run_config, remover, logger)
        for index, result in enumerate(results):
            report.record(result, scanned=index == 0)

        if run_config.halt_on_errors and any(r.halts_run for r in results):
            report.halted = True
            logger.error("Halting on first error (--halt-on-errors)")
            break

    # Only tidy up after a complete run that actually moved things
    if run_config.cleanup and not run_config.dry_run and not report.halted:
        remove_empty_dirs(run_config.source_dir, logger)

    logger.info(report.summary())
    return report


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------


def set_up_logging(verbose: bool, log_file: Path = None):
    """
    Set up console logging and, optionally, a log file.

    Args:
        verbose (bool): Log every decision (DEBUG) instead of warnings and errors only
        log_file (Path, optional): Also append INFO (DEBUG when verbose) messages here

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(__name__)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Drop handlers from an earlier run in the same process
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter("%(message)s")

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            print(f"Failed to create log file: {e}", file=sys.stderr)
            sys.exit(1)
        fh.setLevel(logging.DEBUG if verbose else logging.INFO)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger


def validate_args(source_dir: Path, logger):
    """
    Exit if the source directory does not exist.

    Source and destination may be the same directory: organizing a tree in
    place is supported and files already filed are skipped.
    """
    if not source_dir.exists() or not source_dir.is_dir():
        logger.error(f"Source directory does not exist: {source_dir}")
        sys.exit(1)


def normalize_extensions(ext_string: str):
    """
    Normalize a comma-separated list of extensions.

    Returns:
        frozenset: Lowercase extensions, each starting with a dot
    """
    return frozenset(
        "." + ext.strip().lower().lstrip(".")
        for ext in ext_string.split(",")
        if ext.strip()
    )


def print_examples():
    """Print the examples section of the module docstring."""
    # Examples run from the USAGE EXAMPLES header to the "See --help" line
    doc_lines = __doc__.split("\n")
    examples_start = doc_lines.index("USAGE EXAMPLES:")
    examples_end = next(
        (
            i
            for i, line in enumerate(doc_lines[examples_start:], examples_start)
            if line.startswith("See --help")
        ),
        len(doc_lines),
    )

    examples = "\n".join(doc_lines[examples_start : examples_end + 1])
    print(examples)


def _day_wrap_arg(value: str) -> datetime.timedelta:
    try:
        return parse_day_wrap(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


class VersionedArgumentParser(argparse.ArgumentParser):
    """Custom ArgumentParser that displays version on error when no arguments provided."""

    def error(self, message):
        """Override error method to show version before error message."""
        # Bare invocation: lead with the version so users know what they ran
        if "required" in message and len(sys.argv) == 1:
            sys.stderr.write(f"exifmv {myversion}\n\n")
            sys.stderr.write(f"error: {message}\n")
            sys.stderr.write("Try 'exifmv --help' for more information.\n")
        else:
            sys.stderr.write(f"{self.prog}: error: {message}\n")
            sys.stderr.write(f"Try '{self.prog} --help' for more information.\n")
        sys.exit(2)


def parse_arguments(args=None):
    """
    Parse command line arguments using argparse.

    Args:
        args (list, optional): Command line arguments. Defaults to sys.argv[1:].

    Returns:
        argparse.Namespace: Parsed arguments
    """
    if args is None:
        args = sys.argv[1:]

    # --examples works without the required positional arguments
    if "--examples" in args:
        print_examples()
        sys.exit(0)

    parser = VersionedArgumentParser(
        prog="exifmv",
        description="Move images into a YYYY/MM/DD folder hierarchy based on the capture date in their EXIF tags. Files that already exist at the destination with the same name and size are treated as duplicates; destination files are never overwritten.",
        epilog="""
IMPORTANT NOTES:
• Only files directly inside SOURCE are processed unless -r is given
• Duplicates are left in place unless --remove-source or --trash-source is given
• Files without a capture date are skipped and counted as errors by default
• Exit status is non-zero if any file could not be processed
• Use -d/--dry-run to preview operations before making changes""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "source_dir",
        help="Where to search for images.",
        metavar="SOURCE",
    )

    parser.add_argument(
        "destination_dir",
        nargs="?",
        default=".",
        help="Where to move the images. Date folders (YYYY/MM/DD) are created below it as needed [default: current directory]",
        metavar="DESTINATION",
    )

    parser.add_argument(
        "-r",
        "-R",
        "--recurse-subdirs",
        action="store_true",
        dest="recurse",
        help="Recurse into subdirectories of SOURCE.",
    )

    parser.add_argument(
        "-L",
        "--dereference",
        action="store_true",
        help="Follow symbolic links. Without this flag symlinked files are skipped and symlinked directories are not entered.",
    )

    parser.add_argument(
        "-l",
        "--make-lowercase",
        action="store_true",
        dest="make_lowercase",
        help="Change file name and extension to lowercase at the destination. 'Foo1234.ARW' becomes 'foo1234.arw'.",
    )

    parser.add_argument(
        "-w",
        "--day-wrap",
        type=_day_wrap_arg,
        default=datetime.timedelta(0),
        dest="day_wrap",
        metavar="H[:M]",
        help="Time of day at which a new day starts. With '6:00' a photo taken at 00:30 is filed under the previous day [default: 0:0]",
    )

    parser.add_argument(
        "-d",
        "--dry-run",
        action="store_true",
        dest="dry_run",
        help="Do not move, delete or create anything; report every intended action instead. Implies --verbose.",
    )

    parser.add_argument(
        "-H",
        "--halt-on-errors",
        action="store_true",
        dest="halt_on_errors",
        help="Stop at the first file that cannot be processed. Conflicting files at the destination are reported but never stop the run.",
    )

    removal = parser.add_mutually_exclusive_group()
    removal.add_argument(
        "--remove-source",
        action="store_true",
        dest="remove_source",
        help="Permanently delete a source file when an identical (same name and size) file already exists at its destination.",
    )
    removal.add_argument(
        "--trash-source",
        action="store_true",
        dest="trash_source",
        help="Move a source file to the trash when an identical (same name and size) file already exists at its destination.",
    )

    parser.add_argument(
        "--use-rip",
        action="store_true",
        dest="use_rip",
        help="Remove duplicate source files with the external 'rip' utility instead. Requires --remove-source or --trash-source.",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log one line per file and decision.",
    )

    parser.add_argument(
        "-j",
        "--extensions",
        default=None,
        dest="extense",
        metavar="EXT",
        help="File extensions to process, comma-separated without dots, e.g. 'jpg,arw,dng'. Matched case-insensitively [default: common RAW, image and movie formats]",
    )

    parser.add_argument(
        "--missing-date",
        choices=MISSING_DATE_POLICIES,
        default="skip",
        dest="missing_date",
        help=f"What to do with files without a capture date: 'skip' (default) = leave them and count an error; 'mtime' = use the file's modification time; 'unknown' = move them to DESTINATION/{UNKNOWN_DATE_DIR}.",
    )

    parser.add_argument(
        "--ignore-sidecars",
        action="store_true",
        dest="ignore_sidecars",
        help="Do not move '<file>.xmp' sidecars along with their images.",
    )

    parser.add_argument(
        "-c",
        "--cleanup",
        action="store_true",
        help="Remove directories below SOURCE that are empty after the run.",
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        dest="log_file",
        metavar="PATH",
        help="Also append a log of the session to PATH.",
    )

    parser.add_argument(
        "--examples",
        action="store_true",
        help="Display usage examples and exit.",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show program version and exit",
    )

    parsed_args = parser.parse_args(args)

    if parsed_args.use_rip and not (parsed_args.remove_source or parsed_args.trash_source):
        parser.error("--use-rip requires --remove-source or --trash-source")

    # An empty -j would silently select nothing
    if parsed_args.extense is not None and not normalize_extensions(parsed_args.extense):
        parser.error("--extensions needs at least one extension, e.g. 'jpg,arw'")

    return parsed_args


def build_config(parsed_args) -> RunConfig:
    """Fold parsed arguments into a RunConfig."""
    if parsed_args.extense is None:
        ext_list = EXTENSIONS
    else:
        ext_list = normalize_extensions(parsed_args.extense)

    return RunConfig(
        source_dir=Path(parsed_args.source_dir).expanduser().resolve(),
        destination_dir=Path(parsed_args.destination_dir).expanduser().resolve(),
        recurse=parsed_args.recurse,
        dereference=parsed_args.dereference,
        make_lowercase=parsed_args.make_lowercase,
        day_wrap=parsed_args.day_wrap,
        dry_run=parsed_args.dry_run,
        halt_on_errors=parsed_args.halt_on_errors,
        remove_source=parsed_args.remove_source,
        trash_source=parsed_args.trash_source,
        use_rip=parsed_args.use_rip,
        ext_list=ext_list,
        missing_date=parsed_args.missing_date,
        sidecars=not parsed_args.ignore_sidecars,
        cleanup=parsed_args.cleanup,
    )


def main(args=None):
    """
    Main entry point for the script.

    Args:
        args (list, optional): Command line arguments. Defaults to None.

    Returns:
        int: 0 if every file was processed without error, 1 otherwise
    """
    parsed_args = parse_arguments(args)
    run_config = build_config(parsed_args)

    logger = set_up_logging(parsed_args.verbose or run_config.dry_run, parsed_args.log_file)

    start_time = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    logger.info("=" * 80)
    logger.info("exifmv - move images into folders by capture date")
    logger.info(f"Version: {__version__}")
    logger.info(f"Session Started: {start_time}")
    logger.info("=" * 80)
    logger.debug("Command-line options: %s", vars(parsed_args))

    validate_args(run_config.source_dir, logger)

    if parsed_args.extense is None:
        logger.debug("Processing default image and movie extensions")
    else:
        logger.debug(f"Processing files with extensions: {', '.join(sorted(run_config.ext_list))}")

    # Create the destination root up front so per-file planning only adds date folders
    if not run_config.dry_run:
        try:
            if not run_config.destination_dir.exists():
                run_config.destination_dir.mkdir(parents=True, exist_ok=True)
                logger.info("created: %s", run_config.destination_dir)
        except OSError as e:
            logger.error(
                f"Failed to create destination directory {run_config.destination_dir}: {e}"
            )
            sys.exit(1)

    report = run(run_config, logger)
    print(report.summary())

    end_time = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    logger.info("=" * 80)
    logger.info(f"Session Ended: {end_time}")
    logger.info("=" * 80)
    logger.info("")

    return report.exit_code


if __name__ == "__main__":
    exit_code = main()
    logging.shutdown()
    sys.exit(exit_code)
