"""
Проверка пользовательского ввода (имя файла, описание, строка поиска).

Функции чистые и вызываются до любых побочных эффектов: отклоненный запрос
оставляет после себя только запись аудита о неудаче.
"""
from typing import Optional

from tenant_file_store.models.common import Result

MAX_FILE_NAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 5000
MAX_SEARCH_TERM_LENGTH = 1000

# Разделители путей и зарезервированная пунктуация Windows/POSIX
RESERVED_CHARS = frozenset('/\\:*?"<>|')


def _has_control_chars(value: str) -> bool:
    return any(ord(c) < 32 or ord(c) == 127 for c in value)


def validate_file_name(file_name: Optional[str]) -> Result[None]:
    if file_name is None or not file_name.strip():
        return Result.failure("File name cannot be empty.")

    if len(file_name) > MAX_FILE_NAME_LENGTH:
        return Result.failure(f"File name exceeds maximum length of {MAX_FILE_NAME_LENGTH} characters.")

    if "\0" in file_name:
        return Result.failure("File name contains null bytes.")

    if _has_control_chars(file_name) or any(c in RESERVED_CHARS for c in file_name):
        return Result.failure("File name contains invalid characters.")

    if ".." in file_name or file_name.startswith("."):
        return Result.failure("File name cannot contain path traversal patterns.")

    return Result.success()


def validate_description(description: Optional[str]) -> Result[None]:
    if description is None or not description.strip():
        return Result.success()

    if len(description) > MAX_DESCRIPTION_LENGTH:
        return Result.failure(f"Description exceeds maximum length of {MAX_DESCRIPTION_LENGTH} characters.")

    if "\0" in description:
        return Result.failure("Description contains null bytes.")

    return Result.success()


def validate_search_term(search_term: Optional[str]) -> Result[None]:
    # Пустой поиск допустим - это обычный листинг
    if search_term is None or not search_term.strip():
        return Result.success()

    if len(search_term) > MAX_SEARCH_TERM_LENGTH:
        return Result.failure(f"Search term exceeds maximum length of {MAX_SEARCH_TERM_LENGTH} characters.")

    if "\0" in search_term:
        return Result.failure("Search term contains null bytes.")

    return Result.success()
