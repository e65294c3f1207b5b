"""
Rules engine adapter around python-chess.

The session layer never touches a chess.Board directly: it hands a FEN and a
move spec to RulesEngine.apply() and gets back a MoveOutcome describing the
new position, the SAN notation, any captured piece and the terminal
condition (if the move ended the game). The input FEN is never mutated,
so a rejected move leaves the session exactly as it was.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import chess

from hyperchess.enums import Color, EndReason
from hyperchess.errors import InvalidOperation
from hyperchess.messages import MoveSpec

# Non-king pieces each side starts with, keyed by "<type>_<color>"
BASELINE_MATERIAL: Dict[str, int] = {
    "p_w": 8, "p_b": 8,
    "n_w": 2, "n_b": 2,
    "b_w": 2, "b_b": 2,
    "r_w": 2, "r_b": 2,
    "q_w": 1, "q_b": 1,
}

PROMOTION_PIECES = {
    "q": chess.QUEEN,
    "r": chess.ROOK,
    "b": chess.BISHOP,
    "n": chess.KNIGHT,
}


def piece_code(piece: chess.Piece) -> str:
    """Encode a piece as "<type>_<color>", e.g. "p_b" for a black pawn."""
    return f"{piece.symbol().lower()}_{'w' if piece.color == chess.WHITE else 'b'}"


def position_key(fen: str) -> str:
    """
    Truncated position key used for repetition detection: board, side to
    move, castling rights and en passant square. Move counters are dropped.
    """
    return " ".join(fen.split(" ")[:4])


@dataclass
class MoveOutcome:
    position: str
    san: str
    uci: str
    mover: Color
    captured: Optional[str] = None
    terminal: Optional[EndReason] = None
    winner: Optional[Color] = None


class RulesEngine:
    """Start position, legality, move application and terminal queries."""

    def start_position(self) -> str:
        return chess.STARTING_FEN

    def apply(self, fen: str, spec: MoveSpec) -> MoveOutcome:
        """
        Apply a move to the position described by fen.

        Raises:
            InvalidOperation: if the move spec is malformed or the move is illegal.
        """
        board = chess.Board(fen)
        move = self._parse(board, spec)

        mover = Color.WHITE if board.turn == chess.WHITE else Color.BLACK
        captured = self._captured_piece(board, move)
        san = board.san(move)
        board.push(move)

        outcome = MoveOutcome(
            position=board.fen(),
            san=san,
            uci=move.uci(),
            mover=mover,
            captured=captured,
        )
        outcome.terminal, outcome.winner = self.terminal_condition(board, mover)
        return outcome

    def terminal_condition(self, board: chess.Board, mover: Color) -> Tuple[Optional[EndReason], Optional[Color]]:
        """Terminal state reached by the side that just moved, if any."""
        if board.is_checkmate():
            return EndReason.CHECKMATE, mover
        if board.is_stalemate():
            return EndReason.STALEMATE, None
        if board.is_insufficient_material():
            return EndReason.INSUFFICIENT_MATERIAL, None
        if board.is_fifty_moves():
            return EndReason.FIFTY_MOVE_DRAW, None
        return None, None

    def material(self, fen: str) -> Dict[str, int]:
        """Count non-king pieces on the board by piece code."""
        counts: Dict[str, int] = {}
        for piece in chess.Board(fen).piece_map().values():
            if piece.piece_type == chess.KING:
                continue
            code = piece_code(piece)
            counts[code] = counts.get(code, 0) + 1
        return counts

    def material_captures(self, fen: str) -> Dict[str, List[str]]:
        """
        Rebuild the capture ledger by diffing current material against the
        starting baseline. Promotions change material without a capture, so
        this drifts once a pawn promotes.
        """
        counts = self.material(fen)
        captures: Dict[str, List[str]] = {"white": [], "black": []}
        for code, start_count in BASELINE_MATERIAL.items():
            missing = start_count - counts.get(code, 0)
            # white's missing pieces were taken by black and vice versa
            side = "black" if code.endswith("_w") else "white"
            captures[side].extend([code] * max(0, missing))
        return captures

    # --- Internal helpers ---
    def _parse(self, board: chess.Board, spec: MoveSpec) -> chess.Move:
        if spec.san:
            try:
                return board.parse_san(spec.san)
            except ValueError:
                raise InvalidOperation(f"Invalid move: {spec.san}")

        if spec.uci:
            uci = spec.uci.strip().lower()
        elif spec.from_square and spec.to_square:
            uci = (spec.from_square + spec.to_square).lower()
            if spec.promotion:
                promotion = spec.promotion.lower()
                if promotion not in PROMOTION_PIECES:
                    raise InvalidOperation(f"Invalid promotion piece: {spec.promotion}")
                uci += promotion
        else:
            raise InvalidOperation("Move must give from/to squares, san or uci")

        try:
            move = chess.Move.from_uci(uci)
        except ValueError:
            raise InvalidOperation(f"Invalid move format: {uci}")

        # A pawn reaching the last rank without a piece choice becomes a queen
        if move.promotion is None and self._is_promotion_square(board, move):
            move = chess.Move(move.from_square, move.to_square, promotion=chess.QUEEN)

        if move not in board.legal_moves:
            raise InvalidOperation(f"Invalid move: {uci}")
        return move

    def _is_promotion_square(self, board: chess.Board, move: chess.Move) -> bool:
        piece = board.piece_at(move.from_square)
        if not piece or piece.piece_type != chess.PAWN:
            return False
        return chess.square_rank(move.to_square) in (0, 7)

    def _captured_piece(self, board: chess.Board, move: chess.Move) -> Optional[str]:
        if board.is_en_passant(move):
            return "p_b" if board.turn == chess.WHITE else "p_w"
        target = board.piece_at(move.to_square)
        return piece_code(target) if target else None
