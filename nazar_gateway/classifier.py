"""
Event classifier.

Turns a RawChangeEvent into a ClassifiedRecord by re-deriving file type,
category and directory-ness from the path and change kind alone. The
producer's declared fileType, category and isDirectory are ignored.
"""

import math
import posixpath
from types import MappingProxyType

from .models import DIRECTORY_KINDS, NO_EXTENSION, ClassifiedRecord, RawChangeEvent

_FILE_TYPE_EXTENSIONS = {
    'document': ('.txt', '.doc', '.docx', '.pdf', '.rtf', '.odt', '.pages', '.md', '.csv',
                 '.xls', '.xlsx', '.ppt', '.pptx'),
    'image': ('.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.ico', '.tiff', '.raw'),
    'video': ('.mp4', '.avi', '.mov', '.wmv', '.flv', '.webm', '.mkv', '.m4v', '.3gp'),
    'audio': ('.mp3', '.wav', '.flac', '.aac', '.ogg', '.wma', '.m4a'),
    'code': ('.js', '.ts', '.jsx', '.tsx', '.py', '.java', '.cpp', '.c', '.cs', '.php', '.rb',
             '.go', '.rs', '.swift', '.kt', '.html', '.css', '.scss', '.less', '.json', '.xml',
             '.yaml', '.yml', '.sql'),
    'archive': ('.zip', '.rar', '.7z', '.tar', '.gz', '.bz2', '.xz'),
}

# Extension (lower-case, with leading dot) -> file type. Anything missing is 'other'.
EXTENSION_FILE_TYPES = MappingProxyType({
    ext: file_type
    for file_type, extensions in _FILE_TYPE_EXTENSIONS.items()
    for ext in extensions
})

FILE_TYPE_CATEGORIES = MappingProxyType({
    'document': 'document',
    'image': 'media',
    'video': 'media',
    'audio': 'media',
    'code': 'code',
    'archive': 'archive',
    'other': 'other',
})


def split_path(path: str):
    """Return (file_name, extension, directory) for a POSIX-style path.

    The extension is lower-cased and includes the leading dot; a file with
    no extension (including dot-files such as ``.bashrc``) yields ``'none'``.
    """
    file_name = posixpath.basename(path)
    _, ext = posixpath.splitext(file_name)
    directory = posixpath.dirname(path) or '.'
    return file_name, (ext.lower() or NO_EXTENSION), directory


def get_file_type(extension: str) -> str:
    return EXTENSION_FILE_TYPES.get((extension or '').lower(), 'other')


def get_category(file_type: str) -> str:
    return FILE_TYPE_CATEGORIES.get(file_type, 'other')


def classify(raw: RawChangeEvent) -> ClassifiedRecord:
    """Derive a ClassifiedRecord from ``raw``. Never raises.

    Fractional timestamps and sizes are truncated to whole milliseconds
    and bytes. A missing, negative or non-finite size becomes 0.
    """
    file_name, extension, directory = split_path(raw.path)
    file_type = get_file_type(extension)

    size = raw.size or 0
    if (isinstance(size, float) and not math.isfinite(size)) or size < 0:
        size = 0

    return ClassifiedRecord(
        path=raw.path,
        file_name=file_name,
        extension=extension,
        directory=directory,
        file_type=file_type,
        category=get_category(file_type),
        change_kind=raw.change_kind,
        timestamp=int(raw.timestamp),
        size=int(size),
        is_directory=raw.change_kind in DIRECTORY_KINDS,
        client_id=raw.client_id,
    )
