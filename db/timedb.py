###########EXTERNAL IMPORTS############

from influxdb import InfluxDBClient
from influxdb.exceptions import InfluxDBClientError, InfluxDBServerError
from influxdb.resultset import ResultSet
from requests.exceptions import RequestException
from typing import Any, Dict, Iterable, Iterator, List, Optional

#######################################

#############LOCAL IMPORTS#############

from util.debug import LoggerManager
from model.config import InfluxConfig

#######################################

# Errors raised by the InfluxDB client, either reported by the server or by the HTTP transport
INFLUX_ERRORS = (InfluxDBClientError, InfluxDBServerError, RequestException)


def is_type_conflict(error: Exception) -> bool:
    """Tells whether a write failed because a field value does not match the stored field type."""

    return isinstance(error, InfluxDBClientError) and error.code == 400 and "field type conflict" in str(error.content)


def is_missing_database(error: Exception) -> bool:
    """Tells whether a query failed because the database does not exist."""

    return isinstance(error, InfluxDBClientError) and "database not found" in str(error.content)


class TimeDBClient:
    """
    Client interface of the InfluxDB time-series store.

    This class provides functionality for:
        - Opening and closing the InfluxDB connection.
        - Creating the message database when it does not exist.
        - Writing batches of points with nanosecond precision.
        - Running InfluxQL statements with bound parameters and iterating their points.

    Attributes:
        config (InfluxConfig): Connection settings.
        client (Optional[InfluxDBClient]): Connection to the InfluxDB server.
    """

    def __init__(self, config: InfluxConfig):
        self.config = config
        self.client: Optional[InfluxDBClient] = None

    @property
    def database(self) -> str:
        return self.config.database

    async def init_connection(self) -> None:
        """
        Initiates the InfluxDB connection and creates the database if needed.
        Should be called during application initialization.

        Raises:
            RuntimeError: If the connection is already open.
        """

        logger = LoggerManager.get_logger(__name__)

        if self.client is not None:
            raise RuntimeError("InfluxDB connection is already instantiated")

        try:
            self.client = InfluxDBClient(
                host=self.config.host,
                port=self.config.port,
                username=self.config.username,
                password=self.config.password,
                database=self.config.database,
            )
            self.ensure_database()
        except Exception as e:
            logger.exception(f"Failed to initiate InfluxDB connection: {e}")
            raise

    async def close_connection(self) -> None:
        """
        Closes the InfluxDB connection.
        Should be called during application shutdown.
        """

        logger = LoggerManager.get_logger(__name__)

        try:
            if self.client:
                self.client.close()
                self.client = None

        except Exception as e:
            logger.exception(f"Failed to close InfluxDB connection: {e}")

    def __require_client(self) -> InfluxDBClient:
        """
        Return the active InfluxDB client connection.

        Raises:
            RuntimeError: If the client is not initialized.
        """

        if self.client is None:
            raise RuntimeError("InfluxDB client is not instantiated properly. ")
        return self.client

    def check_db_exists(self, db: str) -> bool:
        """
        Checks whether a given InfluxDB database exists.

        Args:
            db (str): The name of the database.

        Returns:
            bool: True if the database exists, False otherwise.
        """

        client = self.__require_client()
        return {"name": db} in client.get_list_database()

    def ensure_database(self) -> None:
        """Creates the message database if it does not exist."""

        client = self.__require_client()
        if not self.check_db_exists(self.database):
            client.create_database(self.database)

    def write_points(self, points: List[Dict[str, Any]]) -> None:
        """
        Writes a batch of points (times in nanoseconds) in a single request.

        Args:
            points: Points in the InfluxDB client format (measurement, tags, fields, time).
        """

        client = self.__require_client()
        client.write_points(points=points, time_precision="n", database=self.database)

    def query(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Runs an InfluxQL statement and returns its points with nanosecond epoch times.

        Args:
            query: InfluxQL statement using $name placeholders.
            params: Values bound to the placeholders.

        Returns:
            List[Dict[str, Any]]: One dict per returned point.
        """

        client = self.__require_client()
        result = client.query(query, bind_params=params or None, epoch="ns", database=self.database)
        return list(self.__iter_points(result))

    def execute(self, statement: str, params: Optional[Dict[str, Any]] = None) -> None:
        """
        Runs a modifying InfluxQL statement (e.g. DELETE) with bound parameters.

        Args:
            statement: InfluxQL statement using $name placeholders.
            params: Values bound to the placeholders.
        """

        client = self.__require_client()
        client.query(statement, bind_params=params or None, database=self.database, method="POST")

    def __iter_points(self, res: ResultSet | Iterable[ResultSet]) -> Iterator[Dict[str, Any]]:
        """
        Yield data points from InfluxDB query results.

        Args:
            res: Single ResultSet or iterable of ResultSet objects from InfluxDB query.

        Yields:
            Dict[str, Any]: Individual data points from the result sets.

        Raises:
            TypeError: If iterable contains non-ResultSet objects.
        """

        if isinstance(res, ResultSet):
            yield from res.get_points()
            return

        for rs in res:
            if not isinstance(rs, ResultSet):
                raise TypeError(f"Items must be ResultSet. Got type: {type(rs).__name__}")
            yield from rs.get_points()
