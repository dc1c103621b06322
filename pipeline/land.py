from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type

from common.config import Params, load_params
from common.logging_setup import get_logger, setup_logging, tile_context
from common.status import ArgumentError, DataError, ExitStatus, status_for, write_status
from common.tiles import TileCatalog
from common.types import Tile
from indexing.indexer import LandIndexer
from landcover.raster import open_land_cover
from landcover.taxonomy import Taxonomy, load_taxonomy
from matching.ground_truth import read_category_file, read_gt_file
from matching.matcher import LandMatcher


log = get_logger("landloc.pipeline")


@dataclass(frozen=True)
class DescriptorKind:
    indexer: Type
    matcher: Type


# Other descriptor kinds register their indexer/matcher pair here.
DESCRIPTOR_KINDS: Dict[str, DescriptorKind] = {
    "land": DescriptorKind(indexer=LandIndexer, matcher=LandMatcher),
}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Land-cover descriptor indexing and matching, one tile per run")
    ap.add_argument("--config", default=None, help="Parameter file (default config/params.yaml if present)")
    ap.add_argument("--kind", default="land", choices=sorted(DESCRIPTOR_KINDS), help="Descriptor kind")
    ap.add_argument("--match", action="store_true", help="Match a query against the tile index instead of indexing")
    ap.add_argument("--tile", type=int, default=-1, help="Tile id")
    ap.add_argument("--tiles", default="", help="Tile catalog file (YAML/JSON)")
    ap.add_argument("--hypo", default="", help="Folder with hypos_tile_{id}.npy|.csv")
    ap.add_argument("--nlcd", default="", help="Folder of land-cover classification GeoTIFFs")
    ap.add_argument("--desc", default="", help="Descriptor index folder")
    ap.add_argument("--out", default="", help="Output folder for scores, maps and status.json")
    ap.add_argument("--cat", default="", help="Category file: first line is the query land-cover label")
    ap.add_argument("--cat-gt", dest="cat_gt", default="", help="Ground-truth CSV (image_id, lat, lon, elev, category)")
    ap.add_argument("--id", dest="image_id", type=int, default=-1, help="Row of the ground-truth file to query")
    ap.add_argument("--buffer-gb", dest="buffer_gb", type=float, default=None, help="Override indexer buffer capacity (GB)")
    ap.add_argument("--weight", type=float, default=None, help="Override matcher weight")
    return ap


def _load_params(path: Optional[str]) -> Params:
    try:
        return load_params(path)
    except FileNotFoundError as e:
        raise ArgumentError(str(e)) from e
    except (TypeError, ValueError) as e:
        raise ArgumentError(f"bad parameter file {path}: {e}") from e


def _require(value: str, flag: str) -> str:
    if not str(value or "").strip():
        raise ArgumentError(f"{flag} is required")
    return value


def _catalog_tile(tiles_file: str, tile_id: int, required: bool) -> Optional[Tile]:
    if not tiles_file or not Path(tiles_file).exists():
        if required:
            raise ArgumentError(f"tile catalog not found: {tiles_file or '(none)'}")
        return None
    try:
        catalog = TileCatalog.from_file(tiles_file)
    except ValueError as e:
        raise ArgumentError(f"bad tile catalog {tiles_file}: {e}") from e
    tile = catalog.get(tile_id)
    if tile is None:
        raise ArgumentError(f"tile id {tile_id} not in catalog {tiles_file} ({len(catalog)} tiles)")
    return tile


def _gt_location(gt_file: str, image_id: int) -> Optional[Tuple[float, float, float]]:
    """Location of row image_id of the gt file; None without a gt file."""
    if not gt_file:
        return None
    try:
        records = read_gt_file(gt_file)
    except (FileNotFoundError, ValueError) as e:
        raise ArgumentError(str(e)) from e
    if not 0 <= image_id < len(records):
        raise ArgumentError(f"image id {image_id} out of range for {len(records)} ground-truth rows")
    return records[image_id].location


def run_index(args: argparse.Namespace, params: Params, taxonomy: Taxonomy) -> Dict[str, Any]:
    kind = DESCRIPTOR_KINDS[args.kind]
    paths = params.paths
    hypo = _require(args.hypo or paths.hypo_folder, "--hypo")
    nlcd = _require(args.nlcd or paths.nlcd_folder, "--nlcd")
    desc = _require(args.desc or paths.index_folder, "--desc")
    tile = _catalog_tile(args.tiles or paths.tiles_file, args.tile, required=False)

    land_cover = open_land_cover(nlcd, taxonomy)
    if land_cover is None:
        raise ArgumentError(f"no land-cover rasters in {nlcd}")
    with land_cover:
        indexer = kind.indexer(land_cover, desc, taxonomy, params.indexer)
        if not indexer.load_tile_hypos(hypo, args.tile, tile):
            raise ArgumentError(f"cannot load hypotheses of tile {args.tile} from {hypo}")
        budget = int(args.buffer_gb * (1 << 30)) if args.buffer_gb is not None else None
        path = indexer.index(budget)
    return {"mode": "index", "index": str(path), "hypotheses": len(indexer.hypos)}


def run_match(args: argparse.Namespace, params: Params, taxonomy: Taxonomy, out: str) -> Dict[str, Any]:
    kind = DESCRIPTOR_KINDS[args.kind]
    paths = params.paths
    mcfg = params.matcher
    scaling = mcfg.scaling
    tile = _catalog_tile(_require(args.tiles or paths.tiles_file, "--tiles"), args.tile, required=True)
    assert tile is not None

    if tile.has_no_hypotheses:
        matcher = kind.matcher(None, taxonomy, mcfg)
        matcher.create_empty_prob_map(out, args.tile, tile)
        scaled = matcher.create_scaled_prob_map(out, tile, args.tile, scaling.out_min, scaling.out_max, scaling.threshold)
        log.info("Tile has no hypotheses; wrote placeholder maps", extra={"extra": {"tile_id": args.tile}})
        return {"mode": "match", "empty_tile": True, "scaled_map": str(scaled)}

    hypo = _require(args.hypo or paths.hypo_folder, "--hypo")
    desc = _require(args.desc or paths.index_folder, "--desc")
    gt_location = _gt_location(args.cat_gt, args.image_id)

    query: Any = None
    if args.cat:
        try:
            query = read_category_file(args.cat)
        except (FileNotFoundError, ValueError) as e:
            raise ArgumentError(str(e)) from e
    elif gt_location is not None:
        query = gt_location
    if query is None:
        raise ArgumentError("a query needs --cat or --cat-gt with --id")

    land_cover = None
    if not isinstance(query, str):
        land_cover = open_land_cover(args.nlcd or paths.nlcd_folder, taxonomy)
        if land_cover is None:
            raise ArgumentError(f"no land-cover rasters in {args.nlcd or paths.nlcd_folder} to sample the query location")
    try:
        matcher = kind.matcher(land_cover, taxonomy, mcfg)
        weight = args.weight if args.weight is not None else mcfg.weight
        try:
            q = matcher.create_query_desc(query)
            matcher.matcher(q, hypo, desc, weight, args.tile)
        except DataError as e:
            # no usable query or index: the tile still gets maps, all no data
            matcher.create_empty_prob_map(out, args.tile, tile)
            matcher.create_scaled_prob_map(out, tile, args.tile, scaling.out_min, scaling.out_max, scaling.threshold)
            log.warning("No match for tile; wrote placeholder maps", extra={"extra": {"tile_id": args.tile, "error": str(e)}})
            raise
        matcher.write_out(out, args.tile)
        gt_score = matcher.create_prob_map(hypo, out, args.tile, tile, gt_location)
        scaled = matcher.create_scaled_prob_map(out, tile, args.tile, scaling.out_min, scaling.out_max, scaling.threshold)
    finally:
        if land_cover is not None:
            land_cover.close()
    return {"mode": "match", "query": str(q), "gt_score": gt_score, "scaled_map": str(scaled)}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    with tile_context(args.tile):
        return int(run(args))


def run(args: argparse.Namespace) -> ExitStatus:
    """One index or match run; the outcome always lands in the status file."""
    setup_logging()
    out = args.out
    details: Dict[str, Any] = {"tile_id": args.tile, "mode": "match" if args.match else "index"}
    try:
        params = _load_params(args.config)
        setup_logging(params.log_level, log_file=params.log_file, force=True)
        out = args.out or params.paths.out_folder
        if args.tile < 0:
            raise ArgumentError(f"invalid tile id {args.tile}")
        try:
            taxonomy = load_taxonomy(params.taxonomy)
        except (FileNotFoundError, ValueError) as e:
            raise ArgumentError(str(e)) from e
        if args.match:
            details.update(run_match(args, params, taxonomy, _require(out, "--out")))
        else:
            details.update(run_index(args, params, taxonomy))
        status = ExitStatus.SUCCESS
    except (ArgumentError, DataError) as e:
        status = status_for(e)
        details["error"] = str(e)
        log.error("Run rejected", extra={"extra": {"status": status.name, "tile_id": args.tile, "error": str(e)}})
    except Exception as e:
        status = ExitStatus.FAILURE
        details["error"] = f"{type(e).__name__}: {e}"
        log.exception("Run failed", extra={"extra": {"tile_id": args.tile}})

    write_status(out, status, **details)
    log.info("Run finished", extra={"extra": {"status": status.name, "tile_id": args.tile}})
    return status


if __name__ == "__main__":
    raise SystemExit(main())
