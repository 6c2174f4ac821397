"""
Output of a packing run: time series, particle frames, particle information
and the sqlite run record.
"""

import json
import logging
import os
import shutil
import sqlite3
import time

import numpy as np

logger = logging.getLogger(__name__)


#=====================================
# sqlite run record
#=====================================

def _existing_columns(cursor, table: str):
    return {row[1] for row in cursor.execute(f'PRAGMA table_info("{table}")')}


def store_run_in_sqlite_db(db_file: str, integer_properties: dict, string_properties: dict,
                           real_properties: dict, table: str = "runs") -> int:
    """
    Insert one run into `table`, adding missing columns on the fly.

    Returns the id of the new row.
    """
    with sqlite3.connect(db_file) as connection:
        cursor = connection.cursor()
        cursor.execute(f'CREATE TABLE IF NOT EXISTS "{table}" (runId INTEGER PRIMARY KEY AUTOINCREMENT)')
        columns = _existing_columns(cursor, table)
        for properties, sql_type in ((integer_properties, "INTEGER"), (real_properties, "DOUBLE"),
                                     (string_properties, "TEXT")):
            for name in properties:
                if name not in columns:
                    cursor.execute(f'ALTER TABLE "{table}" ADD COLUMN "{name}" {sql_type}')
                    columns.add(name)

        values = {**{k: int(v) for k, v in integer_properties.items()},
                  **{k: float(v) for k, v in real_properties.items()},
                  **{k: str(v) for k, v in string_properties.items()}}
        names = ", ".join(f'"{name}"' for name in values)
        placeholders = ", ".join("?" for _ in values)
        if values:
            cursor.execute(f'INSERT INTO "{table}" ({names}) VALUES ({placeholders})', list(values.values()))
        else:
            cursor.execute(f'INSERT INTO "{table}" DEFAULT VALUES')
        run_id = cursor.lastrowid
        connection.commit()
    return run_id


def store_timing_in_sqlite_db(db_file: str, run_id: int, reduced_timing: dict, table: str = "Timing"):
    with sqlite3.connect(db_file) as connection:
        cursor = connection.cursor()
        cursor.execute(f'CREATE TABLE IF NOT EXISTS "{table}" (runId INTEGER, sweep TEXT, '
                       'average DOUBLE, min DOUBLE, max DOUBLE, count INTEGER, total DOUBLE, percentage DOUBLE)')
        root_total = max((r["total"] for name, r in reduced_timing.items() if "." not in name), default=0.0)
        for name, record in reduced_timing.items():
            percentage = 100.0 * record["total"] / root_total if root_total > 0.0 else 0.0
            cursor.execute(f'INSERT INTO "{table}" VALUES (?, ?, ?, ?, ?, ?, ?, ?)',
                           (run_id, name, record["average"], record["min"], record["max"],
                            int(record["count"]), record["total"], percentage))
        connection.commit()


#=====================================
# Time series and particle files
#=====================================

class LoggingWriter:
    """Appends one line of global statistics per call."""

    HEADER = ("# t numParticles maxHeight heightOfMass maxVelocity particleVolume "
              "numContacts maxPenetrationDepth avgPenetrationDepth porosity\n")

    def __init__(self, file_name: str):
        self.file_name = file_name
        with open(file_name, "w", encoding="UTF-8") as f:
            f.write(self.HEADER)

    def __call__(self, t: float, particle_info, contact_info, porosity: float):
        with open(self.file_name, "a", encoding="UTF-8") as f:
            f.write(f"{t:.6e} {particle_info.num_particles} {particle_info.maximum_height:.6e} "
                    f"{particle_info.height_of_mass:.6e} {particle_info.maximum_velocity:.6e} "
                    f"{particle_info.particle_volume:.6e} {contact_info.num_contacts} "
                    f"{contact_info.maximum_penetration_depth:.6e} {contact_info.average_penetration_depth:.6e} "
                    f"{porosity:.6e}\n")


def assemble_particle_information(ranks, size_evaluator, precision: int = 12) -> str:
    """One line per owned particle: uid, position, size, sorted semi-axes and orientation."""
    lines = ["# uid px py pz size S I L qw qx qy qz"]
    for r in ranks:
        s = r.storage
        for i in s.owned_indices():
            shape = s.shapes[i]
            values = np.concatenate([s.position[i], [size_evaluator(shape)], shape.semi_axes(), s.quaternion[i]])
            lines.append(f"{int(s.uid[i])} " + " ".join(f"{v:.{precision}g}" for v in values))
    return "\n".join(lines) + "\n"


def save_single(ranks, p4pfile, p4cfile, t: float):
    '''
    save the particles of all ranks at <t> to <p4pfile> and their contacts to <p4cfile>
    usage:
        p4p = open('output.p4p',encoding="UTF-8",mode='w')
        p4c = open('output.p4c',encoding="UTF-8",mode='w')
        save_single(ranks, p4p, p4c, elapsed_time)
    '''
    rows = []
    for r in ranks:
        s = r.storage
        owned = s.owned_indices()
        if len(owned) == 0:
            continue
        mass = 1.0 / s.inv_mass[owned]
        group = np.array([s.shapes[i].shape_type for i in owned])
        rows.append(np.column_stack([s.uid[owned], group, s.interaction_radius[owned], mass,
                                     s.position[owned], s.linear_velocity[owned]]))
    data = np.concatenate(rows) if rows else np.zeros((0, 10))

    # P4P file for particles
    p4pfile.write("TIMESTEP  PARTICLES\n")
    p4pfile.write(f"{t} {len(data)}\n")
    p4pfile.write("ID  GROUP  RAD  MASS  PX  PY  PZ  VX  VY  VZ\n")
    np.savetxt(p4pfile, data, fmt='%d %d %.6e %.6e %.6e %.6e %.6e %.6e %.6e %.6e')

    rows = []
    for r in ranks:
        c = r.contacts
        if len(c) == 0:
            continue
        uid = r.storage.uid
        force = c.solver_data.get("force")
        if force is None or len(force) != len(c):
            force = np.zeros((len(c), 3))
        rows.append(np.column_stack([uid[c.id1], uid[c.id2], c.position, force]))
    data = np.concatenate(rows) if rows else np.zeros((0, 8))

    # P4C file for contacts
    p4cfile.write("TIMESTEP  CONTACTS\n")
    p4cfile.write(f"{t} {len(data)}\n")
    p4cfile.write("P1  P2  CX  CY  CZ  FX  FY  FZ\n")
    np.savetxt(p4cfile, data, fmt='%d %d %.6e %.6e %.6e %.6e %.6e %.6e')


#=====================================
# Recorder
#=====================================

class RunRecorder:
    """Owns the output folder and the unique identifier of one run."""

    def __init__(self, output_folder: str, comm, sqlite_file=None):
        self.output_folder = output_folder
        os.makedirs(output_folder, exist_ok=True)
        # generated on the root rank and broadcast to all others
        self.identifier = comm.broadcast(str(time.time_ns()))[0]
        self.sqlite_file = sqlite_file
        self.logging_writer = None

    def path(self, suffix: str) -> str:
        return os.path.join(self.output_folder, f"{self.identifier}_{suffix}")

    def open_logging(self) -> LoggingWriter:
        file_name = self.path("logging.txt")
        logger.info(f"Writing logging file to {file_name}")
        self.logging_writer = LoggingWriter(file_name)
        return self.logging_writer

    def save_frame(self, ranks, t: float, timestep: int):
        file_name = os.path.join(self.output_folder, f"{self.identifier}_T{timestep:06d}")
        with open(file_name + ".p4p", "w", encoding="UTF-8") as p4p, \
                open(file_name + ".p4c", "w", encoding="UTF-8") as p4c:
            save_single(ranks, p4p, p4c, t)
        return file_name

    def write_particle_info(self, ranks, size_evaluator) -> str:
        file_name = self.path("particle_info.txt")
        logger.info(f"Writing particle info file to {file_name}")
        with open(file_name, "w", encoding="UTF-8") as f:
            f.write(assemble_particle_information(ranks, size_evaluator))
        return file_name

    def copy_config(self, config, config_file=None) -> str:
        """Copy the input file next to the results, or dump the parsed configuration."""
        if config_file is not None and os.path.isfile(config_file):
            target = self.path(os.path.basename(config_file))
            shutil.copyfile(config_file, target)
        else:
            target = self.path("config.json")
            with open(target, "w", encoding="UTF-8") as f:
                json.dump(config.to_dict(), f, indent=2)
        return target

    def store_in_sqlite(self, integer_properties, string_properties, real_properties, reduced_timing):
        if not self.sqlite_file:
            return None
        logger.info(f"Storing run and timing data in sql database file {self.sqlite_file}")
        run_id = store_run_in_sqlite_db(self.sqlite_file, integer_properties, string_properties, real_properties)
        store_timing_in_sqlite_db(self.sqlite_file, run_id, reduced_timing)
        return run_id
