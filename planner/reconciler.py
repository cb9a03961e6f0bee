from typing import Dict, Iterator, List

from .directory import Directory, normalize_name
from .logger import get_logger
from .models import NewItemsPreview, ParsedSchedule

logger = get_logger(__name__)


def _roster_worker_names(parsed: ParsedSchedule) -> Iterator[str]:
    for item in parsed.items:
        for worker in item.workers:
            yield worker.name
    for absence in parsed.absences:
        yield absence.workerName


def _unique_by_key(names: Iterator[str]) -> Dict[str, str]:
    unique: Dict[str, str] = {}
    for name in names:
        key = normalize_name(name)
        if key and key not in unique:
            unique[key] = name
    return unique


def preview(parsed: ParsedSchedule, directory: Directory) -> NewItemsPreview:
    """Classify every address and worker name of ``parsed`` as known or new.

    Read-only: nothing is written to ``directory``. Each new name is reported
    once, in roster order, with the spelling it first appeared under.
    """
    addresses = _unique_by_key(item.address for item in parsed.items)
    workers = _unique_by_key(_roster_worker_names(parsed))

    new_projects: List[str] = [
        name for name in addresses.values() if directory.find_project_by_name(name) is None
    ]
    new_workers: List[str] = [
        name for name in workers.values() if directory.find_worker_by_name(name) is None
    ]
    logger.debug(
        "Reconciled %s: %d new projects, %d new workers",
        parsed.workDate.isoformat(),
        len(new_projects),
        len(new_workers),
    )
    return NewItemsPreview(newProjects=new_projects, newWorkers=new_workers)
