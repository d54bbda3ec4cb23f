"""
Aggregate storage for Proposals and Reservations.

Both aggregates carry an integer ``version`` column. Reads return the
version seen; writes are conditional UPDATEs that only succeed when the row
still carries the expected version, so two writers racing on the same
aggregate cannot silently overwrite each other. Callers must run these
helpers inside ``transaction.atomic()``.
"""

import logging

from django.db.models import F
from django.utils import timezone

from .exceptions import ConcurrentModification

logger = logging.getLogger(__name__)


def load_aggregate(model, pk, lock=True):
    """
    Load an aggregate and the version it was read at.

    Args:
        model: Proposal or Reservation model class
        pk: Primary key of the aggregate
        lock: Take a row lock (SELECT ... FOR UPDATE) for the transaction

    Returns:
        tuple: (instance, version)

    Raises:
        model.DoesNotExist: If no aggregate has this primary key
    """
    queryset = model.objects.all()
    if lock:
        queryset = queryset.select_for_update()
    instance = queryset.get(pk=pk)
    return instance, instance.version


def check_version(instance, expected_version):
    """
    Compare the version a client last saw with the stored one.

    ``expected_version=None`` means the client did not send one; the write
    is then only protected against races inside this request.

    Raises:
        ConcurrentModification: If the client saw an older version
    """
    if expected_version is not None and int(expected_version) != instance.version:
        logger.warning(
            f"Stale write rejected. "
            f"{type(instance).__name__} ID: {instance.pk}, "
            f"Expected Version: {expected_version}, "
            f"Stored Version: {instance.version}"
        )
        raise ConcurrentModification()


def save_aggregate(instance, expected_version, fields):
    """
    Persist ``fields`` of ``instance`` only if nobody wrote it in between.

    The row's version is bumped by one and mirrored onto ``instance``.

    Args:
        instance: Proposal or Reservation instance with pending changes
        expected_version: Version the changes were computed from
        fields: Names of the fields to write

    Raises:
        ValidationError: If the instance fails model validation
        ConcurrentModification: If the stored version moved on
    """
    instance.full_clean()

    now = timezone.now()
    values = {name: getattr(instance, name) for name in fields}
    values['updated_at'] = now
    values['version'] = F('version') + 1

    updated = type(instance).objects.filter(
        pk=instance.pk,
        version=expected_version,
    ).update(**values)

    if updated != 1:
        logger.warning(
            f"Concurrent modification detected. "
            f"{type(instance).__name__} ID: {instance.pk}, "
            f"Expected Version: {expected_version}"
        )
        raise ConcurrentModification()

    instance.version = expected_version + 1
    instance.updated_at = now
    return instance
