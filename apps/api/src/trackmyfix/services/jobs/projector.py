from trackmyfix.services.jobs.types import Job, JobNote, JobSnapshot


def progress_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    # round-half-up of 100 * completed / total without float error
    return (200 * completed + total) // (2 * total)


def _notes_newest_first(notes: tuple[JobNote, ...]) -> tuple[JobNote, ...]:
    # sorted() is stable with reverse=True, so equal timestamps keep insertion order
    return tuple(sorted(notes, key=lambda note: note.created_at, reverse=True))


def project_job(job: Job) -> JobSnapshot:
    total_tasks = len(job.tasks)
    completed_tasks = sum(1 for task in job.tasks if task.completed)

    return JobSnapshot(
        id=job.id,
        title=job.title,
        business_name=job.business_name,
        business_phone=job.business_phone,
        customer_name=job.customer_name,
        customer_phone=job.customer_phone,
        location=job.location,
        assigned_technician=job.assigned_technician,
        notes=_notes_newest_first(job.notes),
        tasks=job.tasks,
        updated_at=job.updated_at,
        completed_tasks=completed_tasks,
        total_tasks=total_tasks,
        progress_percent=progress_percent(completed_tasks, total_tasks),
        all_completed=total_tasks > 0 and completed_tasks == total_tasks,
    )
