import io
import zipfile

from stackswap.utils.strings import to_bytes


def create_zip_file_from_string(file_name: str, content: str) -> bytes:
    """Creates an in-memory zip archive holding a single file with the given name and content."""
    stream = io.BytesIO()
    with zipfile.ZipFile(stream, "w", compression=zipfile.ZIP_DEFLATED) as zip_file:
        info = zipfile.ZipInfo(file_name)
        # the handler file must be readable by the function runtime
        info.external_attr = 0o755 << 16
        info.compress_type = zipfile.ZIP_DEFLATED
        zip_file.writestr(info, to_bytes(content))
    return stream.getvalue()
