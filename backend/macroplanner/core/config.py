from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: str = "development"
    log_level: str = "INFO"

    # Recipe catalogue used by the HTTP app
    recipe_data_path: str = "data/recipes.json"

    # Acceptance
    acceptance_threshold_pct: float = 10.0
    max_swap_attempts: int = 3
    stagnation_limit: int = 3

    # Prefilter
    density_threshold: float = 0.6
    ratio_tolerance_factor: float = 0.95
    enforce_axes: bool = True

    # Reference densities (g per 100g)
    reference_protein_density: float = 20.0
    reference_carbs_density: float = 50.0
    reference_fat_density: float = 15.0

    # LP scaling
    daily_band_low: float = 0.95
    daily_band_high: float = 1.05
    slack_cap_fraction: float = 0.5
    relaxed_slack_cap_fraction: float = 1.0
    under_slack_weight: float = 1.0
    over_slack_weight: float = 0.1
    scaling_penalty: float = 0.001
    lp_time_limit_seconds: int = 30

    # Greedy refiner
    refiner_max_iterations: int = 35
    dinner_boost_max_tries: int = 50

    # Slot selection
    recency_memory_size: int = 30

    class Config:
        env_file = ".env"


settings = Settings()
