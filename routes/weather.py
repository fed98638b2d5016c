from fastapi import APIRouter, Depends, Query
from typing import List
from models.weather import CurrentWeather, ForecastDay
from models.rbac import UserProfile
from core.auth import check_permission
from controllers import weather_controller

router = APIRouter(prefix="/weather", tags=["weather"])


@router.get("/current", response_model=CurrentWeather)
async def get_current_weather(city: str = Query(..., min_length=1), current_user: UserProfile = Depends(check_permission("dashboard:read"))):
    return await weather_controller.get_current_weather(city)


@router.get("/forecast", response_model=List[ForecastDay])
async def get_forecast(city: str = Query(..., min_length=1), current_user: UserProfile = Depends(check_permission("dashboard:read"))):
    return await weather_controller.get_forecast(city)
