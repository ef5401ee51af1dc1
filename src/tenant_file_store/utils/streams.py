import io
from typing import BinaryIO, Optional, Tuple, Union

StreamLike = Union[bytes, bytearray, memoryview, BinaryIO]


def as_sized_stream(data: Optional[StreamLike]) -> Tuple[Optional[BinaryIO], int]:
    """
    Приводит bytes / файловый объект к (поток, размер) без потребления данных.
    Позиция seekable-потока сохраняется, несeekable вычитывается в память.
    """
    if data is None:
        return None, 0
    if isinstance(data, (bytes, bytearray, memoryview)):
        raw = bytes(data)
        return io.BytesIO(raw), len(raw)

    seekable = getattr(data, "seekable", None)
    if seekable is not None and seekable():
        pos = data.tell()
        end = data.seek(0, io.SEEK_END)
        data.seek(pos)
        return data, end - pos

    buffered = io.BytesIO(data.read())
    return buffered, buffered.getbuffer().nbytes
