# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""The kafka worker running capping computations.

- The worker waits for commands on the command topic, sending idle heartbeats
- A StartCappingCommand loads the grid file and runs all stages of the input data
- Before every stage and iteration a heartbeat with the current status is sent and the cancel topic is checked
- The results are written to the result filesystem, the result message only holds a reference to them
- A ShutdownCommand exits the worker with the given exit code
"""

import os
import sys
import threading
import time
from functools import partial
from logging import getLogger
from pathlib import Path
from uuid import uuid4

import logbook
import tyro
from beartype.typing import Callable, Optional
from confluent_kafka import Producer
from fsspec import AbstractFileSystem
from fsspec.implementations.dirfs import DirFileSystem
from pydantic import BaseModel
from hostcap_capping_engine.capping_service.kafka_client import LongRunningKafkaConsumer
from hostcap_capping_engine.errors import ComputationCancelledError
from hostcap_capping_engine.grid_access import Grid
from hostcap_capping_engine.pypowsybl.powsybl_grid import load_powsybl_grid_fs
from hostcap_capping_engine.pypowsybl.powsybl_sensitivity_oracle import PowsyblSensitivityOracle
from hostcap_capping_engine.sensitivity_oracle import SensitivityOracle
from hostcap_capping_engine.stage_runner import run_stages
from hostcap_interfaces.capping_result_helpers import save_capping_results_fs
from hostcap_interfaces.messages.capping_service.capping_commands import (
    CancelCappingCommand,
    CappingServiceCommand,
    ShutdownCommand,
    StartCappingCommand,
)
from hostcap_interfaces.messages.capping_service.capping_heartbeat import CappingHeartbeat, CappingStatusInfo
from hostcap_interfaces.messages.capping_service.capping_results import (
    CappingBaseResult,
    CappingCancelledResult,
    CappingStartedResult,
    CappingSuccessResult,
    ErrorResult,
)

logger = logbook.Logger(__name__)


class Args(BaseModel):
    """Holds arguments which must be provided at the launch of the worker.

    Contains arguments that are static for each capping computation.
    """

    kafka_broker: str = "localhost:9092"
    """The Kafka broker to connect to."""

    capping_command_topic: str = "capping_commands"
    """The Kafka topic to listen for start and shutdown commands on."""

    capping_cancel_topic: str = "capping_cancel"
    """The Kafka topic to listen for cancel commands on while computing."""

    capping_results_topic: str = "capping_results"
    """The topic to push results to."""

    capping_heartbeat_topic: str = "capping_heartbeat"
    """The topic to push heartbeats to."""

    heartbeat_interval_ms: int = 1000
    """The interval in milliseconds to send heartbeats while idle."""

    processed_gridfile_folder: Path = Path("processed_gridfiles")
    """A folder where the grid files are stored - this should be a NFS share together with the backend."""

    capping_result_folder: Path = Path("capping_results")
    """A folder where the capping results are stored - this should be a NFS share together with the backend."""


def idle_loop(
    consumer: LongRunningKafkaConsumer,
    send_heartbeat_fn: Callable[[], None],
    heartbeat_interval_ms: int,
) -> StartCappingCommand:
    """Wait for the next StartCappingCommand.

    A ShutdownCommand exits the worker with the exit code of the command. Cancel commands arriving on the command
    topic while no computation runs are dropped.

    Parameters
    ----------
    consumer : LongRunningKafkaConsumer
        The consumer of the command topic
    send_heartbeat_fn : Callable[[], None]
        Sends an idle heartbeat, called whenever no command arrived within the heartbeat interval
    heartbeat_interval_ms : int
        The time to wait for a command before sending a heartbeat

    Returns
    -------
    StartCappingCommand
        The command to run. Its message is committed once the computation is done.
    """
    send_heartbeat_fn()
    logger.info("Entering idle loop")
    while True:
        message = consumer.poll(timeout=heartbeat_interval_ms / 1000.0)
        if not message:
            send_heartbeat_fn()
            continue

        command = CappingServiceCommand.model_validate_json(message.value().decode())

        if isinstance(command.command, StartCappingCommand):
            return command.command

        if isinstance(command.command, ShutdownCommand):
            consumer.commit()
            consumer.close()
            raise SystemExit(command.command.exit_code)

        logger.warning(f"Dropping command while idle: {command}")
        consumer.commit()


def poll_cancel_commands(cancel_consumer: LongRunningKafkaConsumer, computation_id: str) -> bool:
    """Drain the cancel topic and tell whether one of the messages cancels the given computation"""
    cancelled = False
    for message in cancel_consumer.consume(timeout=0, num_messages=100):
        command = CappingServiceCommand.model_validate_json(message.value().decode())
        if isinstance(command.command, CancelCappingCommand) and command.command.computation_id == computation_id:
            logger.info(f"Received cancel command for {computation_id}")
            cancelled = True
    return cancelled


def computation_loop(
    command: StartCappingCommand,
    oracle: SensitivityOracle,
    processed_gridfile_fs: AbstractFileSystem,
    capping_result_fs: AbstractFileSystem,
    send_result_fn: Callable,
    send_heartbeat_fn: Callable,
    check_cancel_fn: Callable[[], bool],
    load_grid_fn: Callable[[AbstractFileSystem, Path], Grid] = load_powsybl_grid_fs,
) -> None:
    """Run a capping computation and send its results.

    Every failure ending the computation is sent as an ErrorResult. Stage level failures are part of the stored
    results and the computation still succeeds.

    Parameters
    ----------
    command : StartCappingCommand
        The command to run
    oracle : SensitivityOracle
        The sensitivity solver
    processed_gridfile_fs : AbstractFileSystem
        The filesystem the grid file of the command is relative to
    capping_result_fs : AbstractFileSystem
        The filesystem to store the results in
    send_result_fn : Callable
        Sends a result message, called with the result and the runtime in seconds
    send_heartbeat_fn : Callable
        Sends a heartbeat, called with a status message and the runtime in seconds
    check_cancel_fn : Callable[[], bool]
        Returns True once the computation should be cancelled, called with every heartbeat
    load_grid_fn : Callable[[AbstractFileSystem, Path], Grid]
        Loads the grid file of the command
    """
    start_time = time.time()
    cancel_event = threading.Event()

    def status_update(message: str) -> None:
        send_heartbeat_fn(message, time.time() - start_time)
        if check_cancel_fn():
            cancel_event.set()

    send_result_fn(CappingStartedResult(), 0.0)
    try:
        grid = load_grid_fn(processed_gridfile_fs, Path(command.grid_file))
        results = run_stages(
            grid=grid,
            oracle=oracle,
            input_data=command.input_data,
            run_id=command.computation_id,
            base_variant_id=command.base_variant_id,
            cancel_event=cancel_event,
            status_update_fn=status_update,
        )
        reference = save_capping_results_fs(capping_result_fs, f"{command.computation_id}.json", results)
        send_result_fn(
            CappingSuccessResult(
                results_reference=reference,
                stage_statuses={name: detail.status for name, detail in results.stages_detail.items()},
            ),
            time.time() - start_time,
        )
    except ComputationCancelledError:
        logger.info(f"Computation {command.computation_id} cancelled")
        send_result_fn(CappingCancelledResult(), time.time() - start_time)
    except Exception as e:
        logger.exception(f"Error while processing {command.computation_id}")
        send_result_fn(ErrorResult(error=str(e)), time.time() - start_time)


def main(
    args: Args,
    producer: Producer,
    command_consumer: LongRunningKafkaConsumer,
    cancel_consumer: LongRunningKafkaConsumer,
    processed_gridfile_fs: AbstractFileSystem,
    capping_result_fs: AbstractFileSystem,
    oracle: Optional[SensitivityOracle] = None,
    load_grid_fn: Callable[[AbstractFileSystem, Path], Grid] = load_powsybl_grid_fs,
) -> None:
    """Start the worker and process commands until a ShutdownCommand arrives.

    Parameters
    ----------
    args : Args
        The arguments to start the worker with.
    producer : Producer
        The producer for results and heartbeats
    command_consumer : LongRunningKafkaConsumer
        The consumer of the command topic, shared with the other workers through its group
    cancel_consumer : LongRunningKafkaConsumer
        The consumer of the cancel topic, in a group of its own
    processed_gridfile_fs : AbstractFileSystem
        The filesystem holding the grid files
    capping_result_fs : AbstractFileSystem
        The filesystem to store results in
    oracle : Optional[SensitivityOracle]
        The sensitivity solver, a PowsyblSensitivityOracle if not given
    load_grid_fn : Callable[[AbstractFileSystem, Path], Grid]
        Loads the grid files of the start commands
    """
    instance_id = str(uuid4())
    logger.info(f"Starting capping worker {instance_id} with arguments {args}")
    oracle = oracle or PowsyblSensitivityOracle()

    def send_heartbeat(status_info: Optional[CappingStatusInfo], ping_consumer: bool) -> None:
        heartbeat = CappingHeartbeat(instance_id=instance_id, idle=status_info is None, status_info=status_info)
        producer.produce(
            args.capping_heartbeat_topic,
            value=heartbeat.model_dump_json().encode(),
            key=instance_id.encode(),
        )
        producer.flush()
        if ping_consumer:
            command_consumer.heartbeat()

    def send_status(message: str, runtime: float, computation_id: str) -> None:
        logger.info(f"Computation {computation_id} after {runtime:.1f}s: {message}")
        send_heartbeat(
            CappingStatusInfo(computation_id=computation_id, runtime=runtime, message=message),
            ping_consumer=True,
        )

    def send_result(result: BaseModel, runtime: float, computation_id: str) -> None:
        producer.produce(
            args.capping_results_topic,
            value=CappingBaseResult(
                computation_id=computation_id,
                instance_id=instance_id,
                runtime=runtime,
                result=result,
            )
            .model_dump_json()
            .encode(),
            key=computation_id.encode(),
        )
        producer.flush()

    while True:
        command = idle_loop(
            consumer=command_consumer,
            send_heartbeat_fn=partial(send_heartbeat, None, ping_consumer=False),
            heartbeat_interval_ms=args.heartbeat_interval_ms,
        )
        command_consumer.start_processing()
        computation_loop(
            command=command,
            oracle=oracle,
            processed_gridfile_fs=processed_gridfile_fs,
            capping_result_fs=capping_result_fs,
            send_result_fn=partial(send_result, computation_id=command.computation_id),
            send_heartbeat_fn=partial(send_status, computation_id=command.computation_id),
            check_cancel_fn=partial(poll_cancel_commands, cancel_consumer, command.computation_id),
            load_grid_fn=load_grid_fn,
        )
        command_consumer.stop_processing()


if __name__ == "__main__":
    logbook.StreamHandler(sys.stdout, level=logbook.INFO).push_application()
    logbook.compat.redirect_logging()
    if "CAPPING_WORKER_CONFIG_FILE" in os.environ:
        with open(os.environ["CAPPING_WORKER_CONFIG_FILE"], "r") as f:
            args = Args.model_validate_json(f.read())
    else:
        args = tyro.cli(Args)

    instance_id = str(uuid4())
    args.capping_result_folder.mkdir(parents=True, exist_ok=True)
    main(
        args=args,
        producer=Producer(
            {
                "bootstrap.servers": args.kafka_broker,
                "client.id": instance_id,
                "log_level": 2,
            },
            logger=getLogger("confluent_kafka.producer"),
        ),
        command_consumer=LongRunningKafkaConsumer(
            topic=args.capping_command_topic,
            group_id="capping-worker",
            bootstrap_servers=args.kafka_broker,
            client_id=instance_id,
        ),
        cancel_consumer=LongRunningKafkaConsumer(
            topic=args.capping_cancel_topic,
            group_id=f"capping-worker-cancel-{instance_id}",
            bootstrap_servers=args.kafka_broker,
            client_id=instance_id,
            auto_offset_reset="latest",
        ),
        processed_gridfile_fs=DirFileSystem(str(args.processed_gridfile_folder)),
        capping_result_fs=DirFileSystem(str(args.capping_result_folder)),
    )
