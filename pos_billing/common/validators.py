"""
Validadores específicos para Ecuador (SRI)
"""
import re
from typing import List, NamedTuple

from pos_billing.core.config import settings


ID_RUC = "RUC"
ID_CEDULA = "Cédula"
ID_FINAL_CONSUMER = "Consumidor Final"
ID_PASSPORT = "Pasaporte"
ID_UNKNOWN = "Desconocido"


class IdentificationResult(NamedTuple):
    is_valid: bool
    type: str


def _check_modulo10(digits: List[int]) -> bool:
    """Módulo 10: cédula y RUC de persona natural (verificador en la posición 10)."""
    coefficients = [2, 1, 2, 1, 2, 1, 2, 1, 2]
    total = 0
    for digit, coef in zip(digits, coefficients):
        value = digit * coef
        total += value - 9 if value >= 10 else value
    expected = 0 if total % 10 == 0 else 10 - (total % 10)
    return expected == digits[9]


def _check_modulo11(digits: List[int], coefficients: List[int], check_index: int) -> bool:
    """Módulo 11: RUC de sociedades públicas y privadas."""
    total = sum(digit * coef for digit, coef in zip(digits, coefficients))
    remainder = total % 11
    expected = 0 if remainder == 0 else 11 - remainder
    # Un resultado de 10 nunca es válido para un RUC
    if expected == 10:
        return False
    return expected == digits[check_index]


def validate_ecuador_identification(identification: str) -> IdentificationResult:
    """
    Clasifica y valida una identificación ecuatoriana según el algoritmo del SRI.

    - Consumidor Final: 9999999999999
    - Pasaporte: alfanumérico o numérico de longitud distinta a 10/13
    - Cédula: 10 dígitos, módulo 10
    - RUC: 13 dígitos; persona natural (tercer dígito < 6, módulo 10),
      sociedad pública (6, módulo 11) o privada (9, módulo 11)
    """
    if not identification or not isinstance(identification, str):
        return IdentificationResult(False, ID_UNKNOWN)

    identification = identification.strip()

    if identification == settings.FINAL_CONSUMER_ID:
        return IdentificationResult(True, ID_FINAL_CONSUMER)

    if not identification.isdigit():
        if len(identification) >= 5:
            return IdentificationResult(True, ID_PASSPORT)
        return IdentificationResult(False, ID_UNKNOWN)

    length = len(identification)
    if length not in (10, 13):
        # Numérico pero fuera de 10/13: identificación extranjera
        if 5 < length < 20:
            return IdentificationResult(True, ID_PASSPORT)
        return IdentificationResult(False, ID_UNKNOWN)

    province = int(identification[:2])
    third_digit = int(identification[2])
    digits = [int(d) for d in identification]

    # Provincias 01-24, 30 para extranjeros
    if not (1 <= province <= 24 or province == 30):
        return IdentificationResult(False, ID_UNKNOWN)

    if third_digit < 6:
        if _check_modulo10(digits):
            if length == 10:
                return IdentificationResult(True, ID_CEDULA)
            if int(identification[10:13]) >= 1:
                return IdentificationResult(True, ID_RUC)
    elif third_digit == 6:
        if length == 13 and _check_modulo11(digits, [3, 2, 7, 6, 5, 4, 3, 2], 8):
            if int(identification[9:13]) >= 1:
                return IdentificationResult(True, ID_RUC)
    elif third_digit == 9:
        if length == 13 and _check_modulo11(digits, [4, 3, 2, 7, 6, 5, 4, 3, 2], 9):
            if int(identification[10:13]) >= 1:
                return IdentificationResult(True, ID_RUC)

    return IdentificationResult(False, ID_UNKNOWN)


def is_final_consumer(identification: str) -> bool:
    return (identification or "").strip() == settings.FINAL_CONSUMER_ID


def is_deliverable_email(email: str) -> bool:
    """
    Indica si el backend podrá enviar el comprobante por correo.
    Los correos genéricos (noemail, consumidor@final) no cuentan.
    """
    if not email:
        return False
    email = email.strip().lower()
    if "noemail" in email or "consumidor@final" in email:
        return False
    return re.match(r'^[^@\s]+@[^@\s]+\.[^@\s]+$', email) is not None
