"""Domain layer - print models and profiles."""
from domain.models import (
    JobOutcome,
    JobReference,
    JobStatus,
    MapView,
    PageSize,
    PrintExtent,
    PrintSettings,
    PrintSpec,
)
from domain.profiles import (
    delete_profile,
    ensure_profiles_dir,
    list_profiles,
    load_profile,
    save_profile,
)

__all__ = [
    'JobOutcome',
    'JobReference',
    'JobStatus',
    'MapView',
    'PageSize',
    'PrintExtent',
    'PrintSettings',
    'PrintSpec',
    'delete_profile',
    'ensure_profiles_dir',
    'list_profiles',
    'load_profile',
    'save_profile',
]
