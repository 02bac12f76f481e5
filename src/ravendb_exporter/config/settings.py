from pydantic import BaseModel, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


class RavenDBSettings(BaseModel):
    url: str = "http://localhost:8080"
    timeout: float = 10.0
    ca_cert: str | None = None
    use_auth: bool = False
    client_cert: str | None = None
    client_key: str | None = None

    @model_validator(mode="after")
    def check_auth(self):
        if self.use_auth and not (self.client_cert and self.client_key):
            raise ValueError("client_cert and client_key must be provided when use_auth is enabled")
        return self


class APISettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 9440


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        yaml_file="config.yaml",
        env_prefix="RAVENDB_EXPORTER_",
        env_nested_delimiter="__",
    )

    ravendb: RavenDBSettings = RavenDBSettings()
    api: APISettings = APISettings()
    # Directory of *.yml query definitions; empty disables query collection
    queries_dir: str = ""
    log_level: str = "INFO"
    log_file: str | None = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, YamlConfigSettingsSource(settings_cls))


settings = Settings()
