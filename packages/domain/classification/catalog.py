"""
PGC (Plano Geral de Contas, Angola) account catalog

The catalog is read-mostly reference data. It is seeded from PGC_SEED and
loaded into an immutable CatalogSnapshot that the classifier scores against.
Each ItemKind only ever sees the account classes listed in KIND_CLASSES.
"""
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common.errors import ClassificationError, ValidationError
from packages.common.models import PgcAccount
from packages.common.schemas.document import ItemKind
from packages.domain.classification.normalizer import normalize, token_set

logger = structlog.get_logger()


# Classes each item kind may be classified into
KIND_CLASSES: Mapping[ItemKind, FrozenSet[int]] = {
    ItemKind.REVENUE: frozenset({7}),
    ItemKind.COST: frozenset({6}),
    ItemKind.ASSET: frozenset({1}),
}

# Catch-all account per kind when nothing in the catalog overlaps
FALLBACK_ACCOUNTS: Mapping[ItemKind, str] = {
    ItemKind.REVENUE: "79",
    ItemKind.COST: "69",
    ItemKind.ASSET: "11",
}


@dataclass(frozen=True)
class AccountSeed:
    code: str
    description: str
    account_type: Optional[str] = None
    category: Optional[str] = None
    keywords: Tuple[str, ...] = ()

    @property
    def account_class(self) -> int:
        return int(self.code[0])


PGC_SEED: Tuple[AccountSeed, ...] = (
    # CLASSE 1 - MEIOS FIXOS E INVESTIMENTOS
    AccountSeed("11", "Imobilizações Corpóreas", "debit", "Meios fixos"),
    AccountSeed("111", "Terrenos e Recursos Naturais", "debit", "Meios fixos",
                ("terreno", "lote", "fazenda", "parcela")),
    AccountSeed("112", "Edifícios e Outras Construções", "debit", "Meios fixos",
                ("edifício", "armazém", "construção", "obra", "pavilhão", "escritório")),
    AccountSeed("113", "Equipamento Básico", "debit", "Meios fixos",
                ("máquina", "trator", "tractor", "gerador", "bomba", "equipamento", "alfaia", "charrua")),
    AccountSeed("114", "Equipamento de Transporte", "debit", "Meios fixos",
                ("viatura", "camião", "carrinha", "veículo", "motorizada", "automóvel")),
    AccountSeed("115", "Equipamento Administrativo", "debit", "Meios fixos",
                ("computador", "portátil", "impressora", "mobiliário", "secretária", "cadeira")),
    AccountSeed("12", "Imobilizações Incorpóreas", "debit", "Meios fixos",
                ("software", "licença", "marca", "patente")),

    # CLASSE 6 - CUSTOS E PERDAS
    AccountSeed("61", "Custo das Mercadorias Vendidas e Matérias Consumidas", "debit", "Custos operacionais"),
    AccountSeed("611", "Matérias-Primas", "debit", "Custos operacionais",
                ("semente", "adubo", "fertilizante", "muda", "planta", "matéria-prima")),
    AccountSeed("612", "Materiais Diversos", "debit", "Custos operacionais",
                ("ração", "vacina", "medicamento", "veterinário", "suplemento")),
    AccountSeed("613", "Combustíveis e Lubrificantes", "debit", "Custos operacionais",
                ("combustível", "gasóleo", "gasolina", "diesel", "lubrificante")),
    AccountSeed("62", "Fornecimentos e Serviços Externos", "debit", "Fornecimentos e serviços"),
    AccountSeed("621", "Subcontratos", "debit", "Fornecimentos e serviços",
                ("subcontrato", "terceirizado", "outsourcing", "colheita mecanizada")),
    AccountSeed("622", "Serviços Especializados", "debit", "Fornecimentos e serviços",
                ("consultoria", "auditoria", "contabilidade", "advogado", "técnico especializado")),
    AccountSeed("623", "Materiais", "debit", "Fornecimentos e serviços",
                ("ferramenta", "economato", "papel", "consumível")),
    AccountSeed("624", "Energia e Fluidos", "debit", "Fornecimentos e serviços",
                ("energia", "eletricidade", "electricidade", "água", "gás")),
    AccountSeed("625", "Deslocações, Estadas e Transportes", "debit", "Fornecimentos e serviços",
                ("transporte", "frete", "viagem", "deslocação", "estadia")),
    AccountSeed("626", "Serviços Diversos", "debit", "Fornecimentos e serviços",
                ("limpeza", "segurança", "vigilância", "comunicações", "telefone", "internet", "renda", "aluguer")),
    AccountSeed("63", "Custos com o Pessoal", "debit", "Pessoal"),
    AccountSeed("631", "Remunerações dos Órgãos Sociais", "debit", "Pessoal",
                ("administrador", "gerente", "conselho")),
    AccountSeed("632", "Remunerações do Pessoal", "debit", "Pessoal",
                ("salário", "ordenado", "remuneração", "vencimento", "subsídio")),
    AccountSeed("635", "Encargos sobre Remunerações", "debit", "Pessoal",
                ("inss", "segurança social", "contribuição")),
    AccountSeed("64", "Amortizações e Provisões", "debit", "Amortizações"),
    AccountSeed("641", "Amortizações do Exercício", "debit", "Amortizações",
                ("depreciação", "amortização", "desgaste")),
    AccountSeed("68", "Custos e Perdas Financeiros", "debit", "Financeiros"),
    AccountSeed("681", "Juros Suportados", "debit", "Financeiros",
                ("juros", "empréstimo", "financiamento", "banco", "comissão bancária")),
    AccountSeed("69", "Outros Custos Operacionais", "debit", "Outros"),

    # CLASSE 7 - PROVEITOS E GANHOS
    AccountSeed("71", "Vendas", "credit", "Vendas"),
    AccountSeed("711", "Vendas de Mercadorias", "credit", "Vendas",
                ("venda", "mercadoria", "revenda", "comercialização")),
    AccountSeed("712", "Vendas de Produtos Acabados", "credit", "Vendas",
                ("produto acabado", "fabrico", "produção")),
    AccountSeed("713", "Vendas de Subprodutos", "credit", "Vendas",
                ("subproduto", "resíduo", "desperdício")),
    AccountSeed("714", "Vendas de Produtos Agrícolas", "credit", "Vendas",
                ("agrícola", "cultivo", "colheita", "plantação", "vegetal", "milho", "feijão", "mandioca")),
    AccountSeed("715", "Vendas de Produtos Pecuários", "credit", "Vendas",
                ("pecuário", "gado", "bovino", "animal", "carne", "leite", "ovos")),
    AccountSeed("72", "Prestação de Serviços", "credit", "Serviços",
                ("serviço", "prestação", "assistência técnica")),
    AccountSeed("721", "Serviços Técnicos", "credit", "Serviços",
                ("técnico", "engenharia", "projeto", "projecto")),
    AccountSeed("722", "Consultoria", "credit", "Serviços",
                ("consultoria", "auditoria", "assessoria")),
    AccountSeed("78", "Proveitos e Ganhos Financeiros", "credit", "Financeiros",
                ("juros", "rendimento", "aplicação", "depósito")),
    AccountSeed("79", "Proveitos e Ganhos Extraordinários", "credit", "Outros",
                ("extraordinário", "indemnização", "subsídio")),
)


@dataclass(frozen=True)
class CatalogAccount:
    code: str
    description: str
    account_class: int
    account_type: Optional[str]
    category: Optional[str]
    tokens: FrozenSet[str]

    @property
    def sort_key(self) -> int:
        return int(self.code)


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable view of the catalog shared by concurrent classifications"""

    accounts: Mapping[str, CatalogAccount] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.accounts)

    def get(self, code: str) -> Optional[CatalogAccount]:
        return self.accounts.get(code)

    def require(self, code: str) -> CatalogAccount:
        """Look up an account, rejecting unknown codes"""
        account = self.accounts.get(code)
        if account is None:
            raise ValidationError(f"Unknown PGC account code: {code}", account_code=code)
        return account

    def for_kind(self, kind: ItemKind) -> List[CatalogAccount]:
        allowed = KIND_CLASSES[kind]
        return [a for a in self.accounts.values() if a.account_class in allowed]

    def fallback_for(self, kind: ItemKind) -> Optional[CatalogAccount]:
        return self.accounts.get(FALLBACK_ACCOUNTS[kind])

    def is_compatible(self, code: str, kind: ItemKind) -> bool:
        account = self.accounts.get(code)
        return account is not None and account.account_class in KIND_CLASSES[kind]


def build_snapshot(rows) -> CatalogSnapshot:
    """Build a snapshot from PgcAccount rows or AccountSeed entries"""
    accounts: Dict[str, CatalogAccount] = {}
    for row in rows:
        keywords = tuple(getattr(row, "keywords", ()) or ())
        accounts[row.code] = CatalogAccount(
            code=row.code,
            description=row.description,
            account_class=row.account_class,
            account_type=row.account_type,
            category=row.category,
            tokens=token_set((row.description, *keywords)),
        )
    return CatalogSnapshot(accounts=accounts)


def seed_snapshot() -> CatalogSnapshot:
    """Snapshot straight from the built-in seed (scripts and tests)"""
    return build_snapshot(PGC_SEED)


class CatalogRepository:
    """Database access for pgc_accounts"""

    async def load(self, db: AsyncSession) -> CatalogSnapshot:
        """
        Load the catalog into an immutable snapshot.

        Accounts in `erro` status are excluded from classification.

        Raises:
            ClassificationError: If the catalog is empty or cannot be read
        """
        try:
            result = await db.execute(
                select(PgcAccount).where(PgcAccount.status != "erro")
            )
            rows = result.scalars().all()
        except Exception as e:
            logger.error("catalog_load_failed", error=str(e))
            raise ClassificationError(f"PGC catalog unavailable: {e}") from e

        if not rows:
            raise ClassificationError("PGC catalog is empty")

        return build_snapshot(rows)

    async def list_accounts(
        self,
        db: AsyncSession,
        account_class: Optional[int] = None,
        search: Optional[str] = None,
    ) -> List[PgcAccount]:
        query = select(PgcAccount).order_by(PgcAccount.code)
        if account_class is not None:
            query = query.where(PgcAccount.account_class == account_class)
        rows = (await db.execute(query)).scalars().all()

        if search:
            wanted = set(normalize(search))
            rows = [
                r for r in rows
                if r.code.startswith(search.strip())
                or wanted & token_set((r.description, *(r.keywords or ())))
            ]
        return list(rows)

    async def seed(self, db: AsyncSession) -> int:
        """
        Insert missing seed accounts; existing rows are left untouched.

        Returns:
            Number of accounts inserted
        """
        existing = set((await db.execute(select(PgcAccount.code))).scalars().all())
        inserted = 0
        for seed in PGC_SEED:
            if seed.code in existing:
                continue
            db.add(PgcAccount(
                code=seed.code,
                description=seed.description,
                account_class=seed.account_class,
                account_type=seed.account_type,
                category=seed.category,
                status="validada",
                keywords=list(seed.keywords),
            ))
            inserted += 1
        await db.flush()
        logger.info("pgc_catalog_seeded", inserted=inserted, total=len(PGC_SEED))
        return inserted


catalog_repository = CatalogRepository()
