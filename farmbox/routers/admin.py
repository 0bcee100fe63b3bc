"""
Scheduler endpoints: hit by the external cron with ``X-Scheduler-Token``.

  - POST /reset-monthly-skips   (1st of every month)
  - POST /reset-yearly-pauses   (January 1st)
  - POST /send-reminders        (daily)
"""

from fastapi import APIRouter, Depends

from farmbox.routers.deps import Services, get_services, require_scheduler
from farmbox.schemas import JobResult

router = APIRouter(dependencies=[Depends(require_scheduler)])


@router.post("/reset-monthly-skips", response_model=JobResult)
async def reset_monthly_skips(services: Services = Depends(get_services)):
    affected = await services.quota_reset.reset_all_monthly_skips()
    return JobResult(job="reset_monthly_skips", affected=affected)


@router.post("/reset-yearly-pauses", response_model=JobResult)
async def reset_yearly_pauses(services: Services = Depends(get_services)):
    affected = await services.quota_reset.reset_all_yearly_pauses()
    return JobResult(job="reset_yearly_pauses", affected=affected)


@router.post("/send-reminders", response_model=JobResult)
async def send_reminders(services: Services = Depends(get_services)):
    affected = await services.reminders.run()
    return JobResult(job="send_reminders", affected=affected)
