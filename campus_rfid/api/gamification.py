"""
Gamification API endpoints.
Rules-based points, levels and badges (students only).
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, List
import logging

from campus_rfid.database import get_db
from campus_rfid.services.directory_service import DirectoryService
from campus_rfid.services.gamification_service import GamificationService, points_to_next_level
from campus_rfid.services.log_service import paginate
from campus_rfid.schemas.schemas import (
    is_student,
    LeaderboardType,
    GamificationProfileResponse,
    BadgeCheckResponse,
    PointsHistoryPage,
    BadgeCatalogItem,
    LeaderboardResponse
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/gamification", tags=["Gamification"])


async def _require_student(db: AsyncSession, user_id: str):
    user = await DirectoryService.get_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if not is_student(user):
        raise HTTPException(status_code=400, detail="Gamification is available for students only")
    return user


@router.get(
    "/profile/{user_id}",
    response_model=GamificationProfileResponse,
    summary="Get Gamification Profile",
    description="""
    Points, level, streaks and badges. A profile is created on first
    access with the 50 point welcome bonus.

    Levels:
    | Level | Points |
    |-------|--------|
    | 1     | 0      |
    | 2     | 100    |
    | 3     | 300    |
    | 4     | 600    |
    | ...   | ...    |
    | 11    | 5500   |
    """
)
async def get_profile(
    user_id: str,
    db: AsyncSession = Depends(get_db)
):
    await _require_student(db, user_id)
    try:
        profile = await GamificationService.get_or_create_profile(db, user_id)
        await db.commit()
        return {
            "profile": profile,
            "points_to_next_level": points_to_next_level(profile.level, profile.total_points)
        }

    except Exception as e:
        logger.error(f"Gamification profile error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/check-badges/{user_id}",
    response_model=BadgeCheckResponse,
    summary="Check Badges",
    description="""
    Evaluate every badge over the last 7 days and award the ones not yet
    earned.

    | Badge              | Requirement                            | Points |
    |--------------------|----------------------------------------|--------|
    | Perfect Attendance | records this week, none absent         | 100    |
    | Early Bird         | 5 classroom entries                    | 50     |
    | Library Champion   | 20 hours in the library                | 75     |
    | Mess Regular       | meals on 5 distinct days               | 30     |
    """
)
async def check_badges(
    user_id: str,
    db: AsyncSession = Depends(get_db)
):
    await _require_student(db, user_id)
    try:
        new_badges = await GamificationService.evaluate_badges(db, user_id)
        profile = await GamificationService.get_or_create_profile(db, user_id)
        await db.commit()

        if new_badges:
            message = f"Congratulations! You earned {len(new_badges)} new badge(s)!"
        else:
            message = "No new badges earned"
        return {"message": message, "new_badges": new_badges, "profile": profile}

    except Exception as e:
        logger.error(f"Badge check error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/points-history/{user_id}",
    response_model=PointsHistoryPage,
    summary="Points History"
)
async def get_points_history(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    try:
        entries, total = await GamificationService.get_points_history(db, user_id, page, limit)
        return {"history": entries, "pagination": paginate(page, limit, total)}

    except Exception as e:
        logger.error(f"Points history error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/badges",
    response_model=List[BadgeCatalogItem],
    summary="Badge Catalog",
    description="All badges; with user_id, each carries an earned flag."
)
async def get_badges(
    user_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    try:
        profile = await GamificationService.get_profile(db, user_id) if user_id else None
        return GamificationService.badge_catalog(profile)

    except Exception as e:
        logger.error(f"Badge catalog error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get(
    "/leaderboard",
    response_model=LeaderboardResponse,
    summary="Leaderboard",
    description="Ranked by points. department/year boards use the viewing student's cohort."
)
async def get_leaderboard(
    type: LeaderboardType = Query(LeaderboardType.overall),
    user_id: Optional[str] = Query(None, description="Viewing user"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db)
):
    try:
        viewer = await DirectoryService.get_user(db, user_id) if user_id else None
        return await GamificationService.get_leaderboard(db, type, viewer, limit)

    except Exception as e:
        logger.error(f"Leaderboard error: {e}")
        raise HTTPException(status_code=500, detail=str(e))
