from __future__ import annotations

import logging
import re
from typing import List, Optional

from app.api.services.tenant_directory import DEFAULT_SUB_ACCOUNT, TenantDirectory

logger = logging.getLogger("tenant.resolver")

# o dispatcher gera referenceId = "<subAccountId>_<unix timestamp>"
_REFERENCE_SUFFIX_RE = re.compile(r"_\d+$")
_INSTANCE_PREFIX = "instance"


def sub_account_from_reference(reference_id: Optional[str]) -> Optional[str]:
    if not reference_id or not reference_id.strip():
        return None
    sub_account_id = _REFERENCE_SUFFIX_RE.sub("", reference_id.strip())
    return sub_account_id or None


def _strip_instance_prefix(instance_id: str) -> str:
    value = instance_id.strip().lower()
    if value.startswith(_INSTANCE_PREFIX):
        value = value[len(_INSTANCE_PREFIX):]
    return value


def instance_id_variants(instance_id: str) -> List[str]:
    """
    O Ultramsg às vezes manda "149866" e às vezes "instance149866".
    Devolve as variantes em ordem, sem repetir a original.
    """
    raw = instance_id.strip()
    bare = _strip_instance_prefix(raw)
    variants: List[str] = []
    for candidate in (raw.lower(), bare, _INSTANCE_PREFIX + bare):
        if candidate and candidate != raw and candidate not in variants:
            variants.append(candidate)
    return variants


def resolve_sub_account(
    directory: TenantDirectory,
    reference_id: Optional[str],
    instance_id: Optional[str],
) -> Optional[str]:
    """
    Ordem (para no primeiro acerto):
      1. referenceId gerado pelo próprio bridge ("acct42_1700000000" -> "acct42")
      2. instanceId direto no diretório
      3. variantes do instanceId (com/sem prefixo "instance")
      4. instanceId == instância default global -> "default"
    """
    sub_account_id = sub_account_from_reference(reference_id)
    if sub_account_id:
        logger.info("TENANT_RESOLVED: via=reference reference_id=%s sub_account_id=%s", reference_id, sub_account_id)
        return sub_account_id

    if not instance_id or not str(instance_id).strip():
        logger.warning("TENANT_UNRESOLVED: no reference_id and no instance_id")
        return None
    instance_id = str(instance_id).strip()

    sub_account_id = directory.resolve_sub_account_by_instance(instance_id)
    if sub_account_id:
        logger.info("TENANT_RESOLVED: via=instance instance_id=%s sub_account_id=%s", instance_id, sub_account_id)
        return sub_account_id

    for variant in instance_id_variants(instance_id):
        sub_account_id = directory.resolve_sub_account_by_instance(variant)
        if sub_account_id:
            logger.info(
                "TENANT_RESOLVED: via=instance_variant instance_id=%s variant=%s sub_account_id=%s",
                instance_id, variant, sub_account_id,
            )
            return sub_account_id

    default_instance = directory.default_instance_id
    if default_instance and _strip_instance_prefix(default_instance) == _strip_instance_prefix(instance_id):
        logger.info("TENANT_RESOLVED: via=default_instance instance_id=%s", instance_id)
        return DEFAULT_SUB_ACCOUNT

    logger.warning("TENANT_UNRESOLVED: instance_id=%s reference_id=%s", instance_id, reference_id)
    return None
