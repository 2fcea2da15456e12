from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from crewscope.db.session import get_db
from crewscope.models.operations import ActivityRecord, Task
from crewscope.schemas.operations import TaskCreate, TaskOut, TaskUpdate
from crewscope.security.context import AuthzContext
from crewscope.security.dependencies import get_authz

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _get_task(db: Session, task_id: int) -> Task:
    task = db.scalars(select(Task).where(Task.id == task_id)).first()
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task


@router.get("", response_model=list[TaskOut])
def list_tasks(site_id: int | None = None, db: Session = Depends(get_db)) -> list[Task]:
    stmt = select(Task).order_by(Task.start_date, Task.id)
    if site_id is not None:
        stmt = stmt.where(Task.site_id == site_id)
    return list(db.scalars(stmt).all())


@router.get("/{task_id}", response_model=TaskOut)
def get_task(task_id: int, db: Session = Depends(get_db)) -> Task:
    return _get_task(db, task_id)


@router.post("", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
def create_task(
    payload: TaskCreate,
    authz: AuthzContext = Depends(get_authz),
    db: Session = Depends(get_db),
) -> Task:
    task = Task(organization_id=authz.organization_id, created_by=authz.user_id, **payload.model_dump())
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


@router.patch("/{task_id}", response_model=TaskOut)
def update_task(
    task_id: int,
    payload: TaskUpdate,
    authz: AuthzContext = Depends(get_authz),
    db: Session = Depends(get_db),
) -> Task:
    task = _get_task(db, task_id)
    previous_status = task.status
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(task, field, value)

    if task.status != previous_status:
        db.add(
            ActivityRecord(
                organization_id=authz.organization_id,
                site_id=task.site_id,
                task_id=task.id,
                actor_id=authz.user_id,
                action="task_status_changed",
                detail=f"{previous_status} -> {task.status}",
            )
        )

    db.commit()
    db.refresh(task)
    return task


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(task_id: int, db: Session = Depends(get_db)) -> Response:
    db.delete(_get_task(db, task_id))
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
