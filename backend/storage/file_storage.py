"""
File storage abstraction.

Stores rendered outputs and thumbnails on the local filesystem.
Writes are atomic: a temporary file in the destination directory is renamed
into place, so readers never see a partially written image.
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class FileStorage:
    """
    Local file storage implementation.

    Files are organized as:
    - media/generated/   - Encoded renders, named by fingerprint and tier
    - media/thumbnails/  - Thumbnail presets of rendered images
    """

    def __init__(self, media_root: Union[str, Path] = "media"):
        self.media_root = Path(media_root)
        self.media_root.mkdir(parents=True, exist_ok=True)

    def get_generated_dir(self) -> Path:
        """Get the directory for encoded renders."""
        path = self.media_root / "generated"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_thumbnails_dir(self) -> Path:
        """Get the directory for thumbnails."""
        path = self.media_root / "thumbnails"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def write_atomic(self, filename: str, data: bytes, directory: Optional[Path] = None) -> Path:
        """
        Write ``data`` to ``directory/filename`` atomically.

        Args:
            filename: Target file name (no directories)
            data: Bytes to write
            directory: Destination directory, defaults to the generated dir

        Returns:
            Absolute path of the written file
        """
        target_dir = Path(directory) if directory is not None else self.get_generated_dir()
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / Path(filename).name

        fd, tmp_name = tempfile.mkstemp(dir=target_dir, prefix=f".{target.name}.", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        return target.resolve()

    def delete_file(self, path: Union[str, Path]) -> bool:
        """
        Delete a file inside the media root.

        Returns:
            True if deleted, False if not found or outside the media root
        """
        file_path = Path(path)
        if not file_path.is_absolute():
            file_path = self.media_root / file_path
        try:
            file_path.resolve().relative_to(self.media_root.resolve())
        except ValueError:
            logger.warning("[storage] refusing to delete %s outside %s", file_path, self.media_root)
            return False
        if file_path.exists():
            file_path.unlink()
            return True
        return False
