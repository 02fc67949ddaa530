from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select

import store
from actions.helpers import opt_datetime, paging, policy_ctx, serialize
from models import APPLICATION_STATUSES, Activity, Application, JobOffer, Profile
from utils import AuthContext, ROLE_CANDIDATE


def _month_starts(now: datetime, count: int) -> list[datetime]:
    out = []
    year, month = now.year, now.month
    for _ in range(count):
        out.append(datetime(year, month, 1, tzinfo=timezone.utc))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(out))


def activity_list(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    limit, offset = paging(data)
    d = data or {}
    stmt = select(Activity)
    for key, col in (("type", Activity.type), ("offerId", Activity.offer_id), ("userId", Activity.user_id)):
        val = str(d.get(key) or "").strip()
        if val:
            stmt = stmt.where(col == val)
    since = opt_datetime(d, "since")
    if since:
        stmt = stmt.where(Activity.created_at > since)
    stmt = stmt.order_by(Activity.created_at.desc(), Activity.id).limit(limit).offset(offset)
    rows = store.list_visible(db, ctx, stmt)

    names = {}
    if rows:
        names = {
            p.id: p.display_name
            for p in db.execute(select(Profile).where(Profile.id.in_({a.user_id for a in rows}))).scalars()
        }
    items = []
    for a in rows:
        item = serialize(a)
        item["userName"] = names.get(a.user_id, "")
        items.append(item)
    return {"items": items, "limit": limit, "offset": offset}


def dashboard_metrics(data, auth: AuthContext | None, db, cfg):
    policy_ctx(auth, db)

    total_candidates = db.execute(select(func.count(Profile.id)).where(Profile.role == ROLE_CANDIDATE)).scalar_one()
    open_offers = db.execute(select(func.count(JobOffer.id)).where(JobOffer.status == "open")).scalar_one()

    by_status = dict(db.execute(select(Application.status, func.count(Application.id)).group_by(Application.status)).all())
    total_apps = sum(int(v or 0) for v in by_status.values())
    accepted = int(by_status.get("accepted", 0) or 0)

    months = _month_starts(datetime.now(timezone.utc), 6)
    monthly = []
    for i, start in enumerate(months):
        end = months[i + 1] if i + 1 < len(months) else None
        stmt = select(Application.status, func.count(Application.id)).where(
            Application.applied_at >= start.strftime("%Y-%m-%d")
        )
        if end is not None:
            stmt = stmt.where(Application.applied_at < end.strftime("%Y-%m-%d"))
        counts = dict(db.execute(stmt.group_by(Application.status)).all())
        row = {"month": start.strftime("%Y-%m")}
        for s in APPLICATION_STATUSES:
            row[s] = int(counts.get(s, 0) or 0)
        monthly.append(row)

    offers = db.execute(select(JobOffer.category, JobOffer.location)).all()
    categories: dict[str, int] = {}
    locations: dict[str, int] = {}
    for category, location in offers:
        categories[category or "uncategorized"] = categories.get(category or "uncategorized", 0) + 1
        locations[location or "unspecified"] = locations.get(location or "unspecified", 0) + 1

    return {
        "totalCandidates": int(total_candidates or 0),
        "openOffers": int(open_offers or 0),
        "applications": {
            "total": total_apps,
            "byStatus": {s: int(by_status.get(s, 0) or 0) for s in APPLICATION_STATUSES},
            "acceptanceRate": round(accepted / total_apps * 100, 1) if total_apps else 0.0,
        },
        "monthlyApplications": monthly,
        "categoryDistribution": [{"category": k, "count": v} for k, v in sorted(categories.items())],
        "locationDistribution": [{"location": k, "count": v} for k, v in sorted(locations.items())],
    }
