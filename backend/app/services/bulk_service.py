"""
Marquage groupé par un admin : un même repas pour une liste d'élèves.

Chaque élève est traité indépendamment (fan-out sur un pool de threads borné,
une session BDD par tâche) ; le rapport n'est renvoyé qu'une fois toutes les
tâches terminées (fan-in). Un élève inéligible ou inactif n'interrompt jamais
le lot : l'échec partiel est le cas normal et se retrouve dans `failures`.
"""

import datetime as dt
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import AbstractContextManager
from typing import Callable, Iterable, List

from app.schemas.attendance import BulkFailure, BulkMarkResult, FailureKind, MarkSource
from app.schemas.meal import Meal
from app.services import attendance_service
from app.services.clock import Clock

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], AbstractContextManager]


def _mark_one(
    store_factory: StoreFactory,
    student_id: int,
    record_date: dt.date,
    meal: Meal,
    present: bool,
    clock: Clock,
):
    with store_factory() as store:
        return attendance_service.mark_meal(
            store, student_id, record_date, meal, present, MarkSource.MANUAL, clock=clock,
        )


def mark_bulk(
    store_factory: StoreFactory,
    student_ids: Iterable[int],
    record_date: dt.date,
    meal: Meal,
    present: bool = True,
    *,
    clock: Clock,
    max_workers: int = 8,
) -> BulkMarkResult:
    """
    Applique mark_meal (source MANUAL) à chaque élève de la liste.

    - Identifiants dédoublonnés (un élève sélectionné deux fois n'est marqué qu'une fois)
    - Aucun ordre garanti entre élèves
    - Ne lève jamais d'exception au niveau du lot : une erreur inattendue pour un
      élève est convertie en échec StorageError pour cet élève
    """
    unique_ids: List[int] = list(dict.fromkeys(student_ids))
    failures: List[BulkFailure] = []
    success_count = 0

    if not unique_ids:
        return BulkMarkResult(success_count=0, failures=[])

    workers = max(1, min(max_workers, len(unique_ids)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_student = {
            executor.submit(_mark_one, store_factory, sid, record_date, meal, present, clock): sid
            for sid in unique_ids
        }

        for future in as_completed(future_to_student):
            student_id = future_to_student[future]
            try:
                result = future.result()
            except Exception as exc:
                logger.error("Marquage groupé : erreur inattendue pour l'élève %s : %s", student_id, exc)
                failures.append(
                    BulkFailure(student_id=student_id, reason=FailureKind.STORAGE_ERROR, message=str(exc))
                )
                continue

            if result.ok:
                success_count += 1
            else:
                failures.append(
                    BulkFailure(
                        student_id=student_id,
                        reason=result.failure.kind,
                        message=result.failure.message,
                    )
                )

    # Rapport dans l'ordre de la sélection, quel que soit l'ordre d'exécution
    position = {sid: i for i, sid in enumerate(unique_ids)}
    failures.sort(key=lambda f: position[f.student_id])
    logger.info(
        "Marquage groupé %s du %s : %d élèves, %d réussis, %d échecs",
        meal.value, record_date, len(unique_ids), success_count, len(failures),
    )
    return BulkMarkResult(success_count=success_count, failures=failures)
