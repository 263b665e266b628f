"""Scheduler status and task controls"""

from fastapi import APIRouter, Depends, HTTPException

from mfi_gateway.api.dependencies import get_scheduler
from mfi_gateway.api.v1.schemas import SchedulerStatusOut, TaskOut, TaskTriggerOut, TaskUpdateIn
from mfi_gateway.domain.exceptions import TaskNotFoundError
from mfi_gateway.services.scheduler import TaskScheduler

router = APIRouter()


@router.get("/scheduler/status", response_model=SchedulerStatusOut)
def get_scheduler_status(scheduler: TaskScheduler = Depends(get_scheduler)):
    return scheduler.get_status()


@router.post("/scheduler/tasks/{task_id}/trigger", response_model=TaskTriggerOut)
async def trigger_task(task_id: str, scheduler: TaskScheduler = Depends(get_scheduler)):
    """Run a task now; failures count towards its retry budget like a timed run"""
    try:
        success = await scheduler.trigger_task(task_id)
    except TaskNotFoundError:
        raise HTTPException(status_code=404, detail="Task not found")
    except (ValueError, RuntimeError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return TaskTriggerOut(success=success, task=TaskOut.model_validate(scheduler.get_task(task_id)))


@router.post("/scheduler/tasks/{task_id}/enable", response_model=TaskOut)
def enable_task(task_id: str, scheduler: TaskScheduler = Depends(get_scheduler)):
    try:
        scheduler.enable_task(task_id)
    except TaskNotFoundError:
        raise HTTPException(status_code=404, detail="Task not found")
    return scheduler.get_task(task_id)


@router.post("/scheduler/tasks/{task_id}/disable", response_model=TaskOut)
def disable_task(task_id: str, scheduler: TaskScheduler = Depends(get_scheduler)):
    try:
        scheduler.disable_task(task_id)
    except TaskNotFoundError:
        raise HTTPException(status_code=404, detail="Task not found")
    return scheduler.get_task(task_id)


@router.patch("/scheduler/tasks/{task_id}", response_model=TaskOut)
def update_task(task_id: str, body: TaskUpdateIn, scheduler: TaskScheduler = Depends(get_scheduler)):
    try:
        return scheduler.update_task(task_id, interval_minutes=body.interval_minutes, max_retries=body.max_retries)
    except TaskNotFoundError:
        raise HTTPException(status_code=404, detail="Task not found")
