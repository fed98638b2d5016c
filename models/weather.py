from pydantic import BaseModel
from typing import Optional


class CurrentWeather(BaseModel):
    location: str
    temperature: float
    feels_like: float
    description: str
    icon: str
    humidity: int
    wind_speed: float
    pressure: int
    visibility: Optional[int] = None


class ForecastDay(BaseModel):
    date: str
    temp_min: float
    temp_max: float
    description: str
    icon: str
    humidity: int
    wind_speed: float
