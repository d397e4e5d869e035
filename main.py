import sys

from config.config import Config
from src_depth_map.depth_map import DepthMapEstimator
from utils.logger_config import LoggerConfig


def load_config(config_path: str) -> Config:
    """
    Load configuration from a JSON file.

    Args:
        config_path (str): Path to the configuration JSON file.

    Returns:
        Config: Loaded configuration object.
    """
    return Config(config_path)


def process_depth_maps(config: Config) -> None:
    """
    Estimate the depth maps of all reference views using the provided configuration.

    Args:
        config (Config): Configuration object containing processing parameters.
    """
    estimator = DepthMapEstimator(config)
    estimator.create_depth_maps()


def main() -> None:
    """
    Main function to execute the depth map estimation pipeline.
    """
    config_file = sys.argv[1] if len(sys.argv) > 1 else "config/config_depth_map.json"

    config = load_config(config_file)
    LoggerConfig.configure_from_config(config)
    process_depth_maps(config)
    print("Processing completed successfully")


if __name__ == "__main__":
    main()
