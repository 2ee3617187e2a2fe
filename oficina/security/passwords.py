from pwdlib import PasswordHash


password_hash = PasswordHash.recommended()

MIN_PASSWORD_LENGTH = 6


def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str) -> bool:
    return password_hash.verify(raw_password, hashed_password)


def validate_new_password(raw_password: str, confirmation: str | None = None) -> None:
    if len(raw_password or '') < MIN_PASSWORD_LENGTH:
        raise ValueError(f'A senha deve ter pelo menos {MIN_PASSWORD_LENGTH} caracteres.')
    if confirmation is not None and raw_password != confirmation:
        raise ValueError('As senhas não conferem.')
